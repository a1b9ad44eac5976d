"""
Synchronized Entity Models for Expense Sync

These models define the strict schemas for every record that travels
between the client, the API and the spreadsheet. They are designed to:
1. Turn untyped spreadsheet cells into typed, defaulted records
2. Accept the same records as JSON from the client
3. Carry the versioning envelope used for conflict detection

DESIGN DECISION: Each coercion rule is declared once as an Annotated type
(Money, Version, Timestamp, ...) and every entity is built from those types.
The models are therefore the declarative field table: one field, one rule.
The fallback instant for timestamps comes from the validation context, so a
whole batch shares one "now" and nothing is cached between requests.
"""

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationInfo,
)
from pydantic.alias_generators import to_camel


RecordKey = Union[str, tuple[str, str]]

_GERMAN_DATE = re.compile(
    r"^(\d{1,2})\.(\d{1,2})\.(\d{4})(?:\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?)?$"
)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def utc_now_iso() -> str:
    """Current UTC time in the format browsers produce with toISOString()."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


# =============================================================================
# COERCION FUNCTIONS - one per cell type
# =============================================================================

def parse_money(value: Any) -> Optional[float]:
    """
    Parse a money cell.

    Accepts numbers, "12.50", "12,50" and German grouping "1.234,56".
    Returns None when the value cannot be read as a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip().replace("\u00a0", "").replace(" ", "")
    if not text:
        return None
    if "," in text:
        # Comma is the decimal separator, dots are thousands grouping
        text = text.replace(".", "").replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_money(value: Any) -> float:
    number = parse_money(value)
    return 0.0 if number is None else number


def coerce_version(value: Any) -> int:
    """Positive integer; anything else collapses to 1."""
    if isinstance(value, bool):
        return 1
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        number = int(value) if math.isfinite(value) else 1
    else:
        match = _LEADING_INT.match(str(value if value is not None else ""))
        number = int(match.group(1)) if match else 1
    return number if number >= 1 else 1


def coerce_flag(value: Any) -> bool:
    """Sheet booleans are the literal text TRUE/FALSE; only TRUE is true."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().upper() == "TRUE"


def coerce_optional_flag(value: Any) -> Optional[bool]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_flag(value)


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_identifier(value: Any) -> str:
    return coerce_text(value).strip()


def strip_choice(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def coerce_optional_text(value: Any) -> Optional[str]:
    text = coerce_text(value).strip()
    return text or None


def coerce_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def coerce_int(value: Any) -> int:
    number = coerce_optional_int(value)
    return 0 if number is None else number


def coerce_string_list(value: Any) -> list[str]:
    """Comma-separated cell (or JSON list) -> trimmed list without empties."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [coerce_text(item) for item in value if item is not None]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def normalize_timestamp(value: Any) -> Optional[str]:
    """
    Return an ISO-8601 string, or None if the value is empty or invalid.

    Valid ISO input is kept verbatim so records round-trip unchanged.
    German DD.MM.YYYY[ HH:MM[:SS]] cells, as written by older exports,
    are converted to ISO.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    match = _GERMAN_DATE.match(text)
    if match:
        day, month, year, hours, minutes, seconds = match.groups()
        try:
            parsed = datetime(
                int(year), int(month), int(day),
                int(hours or 0), int(minutes or 0), int(seconds or 0),
            )
        except ValueError:
            return None
        return parsed.strftime("%Y-%m-%dT%H:%M:%S.000Z")

    candidate = text[:-1] + "+00:00" if text[-1] in "Zz" else text
    try:
        datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return text


def coerce_timestamp(value: Any, info: ValidationInfo) -> str:
    """Timestamp with fallback to the batch's snapshot instant."""
    normalized = normalize_timestamp(value)
    if normalized is not None:
        return normalized
    context = info.context or {}
    return context.get("now") or utc_now_iso()


# =============================================================================
# FIELD TYPES - the declarative rule table
# =============================================================================

Money = Annotated[float, BeforeValidator(coerce_money)]
OptionalMoney = Annotated[Optional[float], BeforeValidator(parse_money)]
Version = Annotated[int, BeforeValidator(coerce_version), Field(ge=1)]
Flag = Annotated[bool, BeforeValidator(coerce_flag)]
OptionalFlag = Annotated[Optional[bool], BeforeValidator(coerce_optional_flag)]
Text = Annotated[str, BeforeValidator(coerce_text)]
# Ids, foreign keys and names are trimmed; free text keeps its whitespace
RequiredText = Annotated[str, BeforeValidator(coerce_identifier), Field(min_length=1)]
OptionalText = Annotated[Optional[str], BeforeValidator(coerce_optional_text)]
Index = Annotated[int, BeforeValidator(coerce_int)]
StringList = Annotated[list[str], BeforeValidator(coerce_string_list)]
Timestamp = Annotated[str, BeforeValidator(coerce_timestamp)]
OptionalTimestamp = Annotated[Optional[str], BeforeValidator(normalize_timestamp)]
DayOfMonth = Annotated[
    Optional[Annotated[int, Field(ge=1, le=31)]],
    BeforeValidator(coerce_optional_int),
]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """How often a recurring transaction is booked."""
    MONTHLY = "monthly"
    BIMONTHLY = "bimonthly"
    QUARTERLY = "quarterly"
    SEMIANNUALLY = "semiannually"
    YEARLY = "yearly"


class SettingKey(str, Enum):
    """
    Per-user settings stored in the UserSettings sheet.

    Values are opaque: comma lists for visibleGroups/quickAddHideGroups,
    embedded JSON for the color override and hidden-category keys.
    """
    GROUP_COLORS = "groupColors"
    VISIBLE_GROUPS = "visibleGroups"
    MODE = "mode"
    QUICK_ADD_HIDE_GROUPS = "quickAddHideGroups"
    CATEGORY_COLOR_OVERRIDES = "categoryColorOverrides"
    HIDDEN_CATEGORIES = "hiddenCategories"
    AI_FEATURES_ENABLED = "aiFeaturesEnabled"


# =============================================================================
# VERSIONING ENVELOPE
# =============================================================================

class SyncRecord(BaseModel):
    """
    Common envelope for every synchronized record.

    CRITICAL: `version` only ever grows for a given key. The server accepts
    a record only if its version is >= the stored one.
    `conflicted` is client-side bookkeeping and is never serialized.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    last_modified: Timestamp = Field(default=None, validate_default=True)
    is_deleted: Flag = False
    version: Version = 1
    conflicted: bool = Field(default=False, exclude=True)

    @property
    def key(self) -> RecordKey:
        raise NotImplementedError


class Entity(SyncRecord):
    """A record identified by its own immutable id."""

    id: RequiredText

    @property
    def key(self) -> RecordKey:
        return self.id


RecordT = TypeVar("RecordT", bound=SyncRecord)


# =============================================================================
# ENTITIES
# =============================================================================

class Category(Entity):
    """Spending category, grouped for budgeting."""

    name: RequiredText
    color: Text = ""
    icon: Text = ""
    budget: OptionalMoney = None
    group: Text = "Sonstiges"
    sort_index: Index = 0


class Transaction(Entity):
    """A single booked expense."""

    amount: Money = 0.0
    description: Text = ""
    category_id: RequiredText
    date: Timestamp = Field(default=None, validate_default=True)
    tag_ids: StringList = Field(default_factory=list)
    recurring_id: OptionalText = None
    created_by: OptionalText = None


class RecurringTransaction(Entity):
    """A fixed cost that is booked on a schedule."""

    amount: Money = 0.0
    description: Text = ""
    category_id: RequiredText
    frequency: Annotated[Frequency, BeforeValidator(strip_choice)]
    day_of_month: DayOfMonth = None
    start_date: Timestamp = Field(default=None, validate_default=True)
    end_date: OptionalTimestamp = None
    active: OptionalFlag = None
    last_processed_date: OptionalTimestamp = None


class Tag(Entity):
    """Free-form label attached to transactions."""

    name: RequiredText


class User(Entity):
    """Household member that creates transactions."""

    name: Text = ""
    color: Text = ""


class UserSetting(SyncRecord):
    """
    A single setting of a user.

    Keyed by (user_id, setting_key) instead of an id.
    """

    user_id: RequiredText
    setting_key: Annotated[SettingKey, BeforeValidator(strip_choice)]
    setting_value: Text = ""

    @property
    def key(self) -> RecordKey:
        return (self.user_id, self.setting_key.value)
