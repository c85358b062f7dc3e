from enum import Enum
from typing import Union


class Language(str, Enum):
    EN = "en"
    AR = "ar"


# Translation dictionary
TRANSLATIONS = {
    "reminder_title": {"en": "Maintenance reminder", "ar": "تذكير صيانة"},
    "reminder_body": {"en": "Maintenance is due for {machine}", "ar": "حان موعد صيانة {machine}"},
    "section": {"en": "Section", "ar": "القسم"},
    "machine": {"en": "Machine", "ar": "الآلة"},
    "code": {"en": "Code", "ar": "الرمز"},
    "state": {"en": "State", "ar": "الحالة"},
    "last_maintenance": {"en": "Last maintenance", "ar": "آخر صيانة"},
    "recurrence": {"en": "Recurrence", "ar": "التكرار"},
    "next_due": {"en": "Next due", "ar": "الموعد القادم"},
    "overdue": {"en": "Overdue", "ar": "متأخرة"},
    "completed_at": {"en": "Completed at", "ar": "تاريخ الإنجاز"},
    "notes": {"en": "Notes", "ar": "ملاحظات"},
    "Working": {"en": "Working", "ar": "تعمل"},
    "Stopped": {"en": "Stopped", "ar": "متوقفة"},
    "Needs Maintenance": {"en": "Needs Maintenance", "ar": "تحتاج صيانة"},
}

_current_lang = Language.EN


def set_language(lang: Union[Language, str]):
    """Set the current language"""
    global _current_lang
    _current_lang = Language(lang)


def get_language() -> Language:
    return _current_lang


def t(key: str, **kwargs) -> str:
    """Translate a key to the current language, filling ``{placeholders}``"""
    text = TRANSLATIONS.get(key, {}).get(_current_lang.value, key)
    return text.format(**kwargs) if kwargs else text
