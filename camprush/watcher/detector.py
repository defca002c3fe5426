"""
Registration-open detection and opening-time extraction

Keyword heuristics over raw (unrendered) HTML. English only.
"""
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Sequence
from dateutil import parser as date_parser
import pytz

logger = logging.getLogger(__name__)


OPEN_KEYWORDS = [
    "register now",
    "register today",
    "registration open",
    "sign up now",
    "enroll now",
    "enroll today",
    "registration is open",
    "click here to register",
    "registration form",
    "submit registration",
    "apply now",
    "book now",
    "reserve now",
    "register for",
    "sign up for",
]

CLOSED_KEYWORDS = [
    "registration closed",
    "registration not open",
    "registration coming soon",
    "registration full",
    "waitlist only",
    "sold out",
    "no longer accepting",
    "opens on",
    "opens at",
    "registration begins",
    "registration starts",
    "coming soon",
    "stay tuned",
]

FORM_KEYWORDS = ["registration", "enroll", "signup"]

BUTTON_VERBS = ["register", "enroll", "sign up", "apply", "book", "reserve"]


@dataclass
class DetectionResult:
    is_open: bool
    open_signals: List[str] = field(default_factory=list)
    closed_signals: List[str] = field(default_factory=list)
    has_form: bool = False
    has_button: bool = False


class OpenDetector:
    """
    Decides whether a fetched page shows registration as open.

    Open iff (an open keyword, a registration form, or a registration
    button/link) is present and no closed keyword is.
    """

    def __init__(
        self,
        open_keywords: Optional[Sequence[str]] = None,
        closed_keywords: Optional[Sequence[str]] = None,
        form_keywords: Optional[Sequence[str]] = None,
        button_verbs: Optional[Sequence[str]] = None
    ):
        self.open_keywords = [k.lower() for k in (open_keywords or OPEN_KEYWORDS)]
        self.closed_keywords = [k.lower() for k in (closed_keywords or CLOSED_KEYWORDS)]
        self.form_keywords = [k.lower() for k in (form_keywords or FORM_KEYWORDS)]
        self.button_patterns = [
            self._button_pattern(verb) for verb in (button_verbs or BUTTON_VERBS)
        ]

    @staticmethod
    def _button_pattern(verb: str) -> re.Pattern:
        verb = re.escape(verb)
        return re.compile(
            rf'<button[^>]*>.*{verb}.*</button>'
            rf'|<input[^>]*value="[^"]*{verb}[^"]*"'
            rf'|<a[^>]*>.*{verb}.*</a>',
            re.IGNORECASE
        )

    def analyze(self, content: Optional[str], status_code: int = 200) -> DetectionResult:
        if not content or not 200 <= status_code < 300:
            return DetectionResult(is_open=False)

        lowered = content.lower()
        open_signals = [k for k in self.open_keywords if k in lowered]
        closed_signals = [k for k in self.closed_keywords if k in lowered]
        has_form = "<form" in lowered and any(k in lowered for k in self.form_keywords)
        has_button = any(p.search(content) for p in self.button_patterns)

        is_open = bool(open_signals or has_form or has_button) and not closed_signals
        return DetectionResult(
            is_open=is_open,
            open_signals=open_signals,
            closed_signals=closed_signals,
            has_form=has_form,
            has_button=has_button,
        )

    def detect(self, content: Optional[str], status_code: int = 200) -> bool:
        return self.analyze(content, status_code).is_open


_default_detector = OpenDetector()


def detect_registration_open(content: Optional[str], status_code: int = 200) -> bool:
    """Detect with the default keyword lists"""
    return _default_detector.detect(content, status_code)


# ========================================
# Opening-time extraction
# ========================================

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_DATE = (
    rf"(?:{_MONTH}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    r"|\d{1,2}/\d{1,2}/\d{2,4})"
)
_TIME = r"(?:\d{1,2}(?::\d{2})?\s*[ap]\.?m\.?|\d{1,2}:\d{2})"
_TRIGGER = (
    r"(?:registration|enrollment|sign[- ]?ups?)\s+(?:opens?|begins?|starts?)"
    r"(?:\s+on)?"
)

TIME_PATTERNS = [
    (
        "trigger_date_time",
        re.compile(
            rf"{_TRIGGER}\s*:?\s*(?P<date>{_DATE})\s*(?:at|@|,|-)?\s*(?P<time>{_TIME})",
            re.IGNORECASE
        ),
    ),
    (
        "trigger_time_date",
        re.compile(
            rf"{_TRIGGER}\s+(?:at\s+)?(?P<time>{_TIME})\s+(?:on\s+)?(?P<date>{_DATE})",
            re.IGNORECASE
        ),
    ),
    (
        "trigger_date",
        re.compile(rf"{_TRIGGER}\s*:?\s*(?P<date>{_DATE})", re.IGNORECASE),
    ),
]

CONFIDENCE_WITH_TIME = 0.9
CONFIDENCE_DATE_ONLY = 0.7
DEFAULT_OPEN_HOUR = 9

_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"\s+")
_HAS_YEAR = re.compile(r"\d{4}|/\d{2,4}$")


@dataclass
class TimeExtraction:
    extracted_time: Optional[datetime]
    confidence: float
    matched_text: str = ""
    pattern: str = ""


def _page_text(content: str) -> str:
    return _SPACE.sub(" ", _TAG.sub(" ", content)).strip()


def extract_registration_time(
    content: Optional[str],
    timezone: str = "America/Chicago",
    now: Optional[datetime] = None
) -> TimeExtraction:
    """
    Find an announced registration-opening time in page text.

    Returns the first announcement found, localized to `timezone`.
    A date without a time is taken as 9:00 local. A date without a year
    is taken as its next occurrence after `now`.
    """
    if not content:
        return TimeExtraction(extracted_time=None, confidence=0.0)

    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    now = (now or datetime.now(pytz.UTC)).astimezone(tz)
    text = _page_text(content)

    for name, pattern in TIME_PATTERNS:
        for match in pattern.finditer(text):
            date_text = match.group("date")
            time_text = match.groupdict().get("time")
            default = datetime(now.year, 1, 1, DEFAULT_OPEN_HOUR, 0)
            try:
                naive = date_parser.parse(
                    f"{date_text} {time_text or ''}".strip(),
                    default=default
                )
            except (ValueError, OverflowError):
                logger.debug(f"Unparseable registration time: {match.group(0)!r}")
                continue

            extracted = tz.localize(naive.replace(tzinfo=None))
            if not _HAS_YEAR.search(date_text) and extracted < now:
                extracted = tz.localize(naive.replace(year=naive.year + 1, tzinfo=None))

            return TimeExtraction(
                extracted_time=extracted,
                confidence=CONFIDENCE_WITH_TIME if time_text else CONFIDENCE_DATE_ONLY,
                matched_text=match.group(0),
                pattern=name,
            )

    return TimeExtraction(extracted_time=None, confidence=0.0)
