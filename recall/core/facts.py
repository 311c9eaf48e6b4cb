"""
Deterministic fact extraction from user turns and keyword categorisation of
facts returned by the language model. English and Chinese are both handled.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

IMMEDIATE_CONFIDENCE = 85
SUBJECT_MAX_CHARS = 50

# Facts the assistant stated about itself (promises, advice, plans)
ASSISTANT_CATEGORIES = {
    "commitment": "assistant_commitment",
    "advice": "assistant_advice",
    "plan": "assistant_plan",
    "info": "assistant_info",
}

_STOP = r"[^.,;!?\n]"
_ZH_STOP = r"[^\s，。,\.！？!?；;]"
_TRAILING_CLAUSE_RE = re.compile(r"\s+(?:and|but|because|so|which|who)\s+.*$", re.IGNORECASE)


@dataclass
class ExtractedFact:
    category: str
    subject: str
    content: str
    importance: int
    confidence: int = IMMEDIATE_CONFIDENCE


# (category, subject key or None for value-keyed, importance, label, patterns)
_IMMEDIATE_RULES: List[Tuple[str, str, int, str, List[re.Pattern]]] = [
    ("identity", "name", 9, "Name is {}", [
        re.compile(r"\bmy name is ([A-Za-z][\w'-]{1,30})", re.IGNORECASE),
        re.compile(r"\bcall me ([A-Za-z][\w'-]{1,30})", re.IGNORECASE),
        re.compile(rf"(?:我叫|我的名字是|名字叫|名字是)({_ZH_STOP}{{2,8}})"),
    ]),
    ("age", "age", 8, "Age is {}", [
        re.compile(r"\bI(?: am|'m) (\d{1,3}) years? old\b", re.IGNORECASE),
        re.compile(r"我(?:今年)?(\d{1,3})岁"),
    ]),
    ("work", "occupation", 8, "Works as {}", [
        re.compile(rf"\bI work as (?:an? )?({_STOP}{{2,40}})", re.IGNORECASE),
        re.compile(rf"\bmy job is (?:an? )?({_STOP}{{2,40}})", re.IGNORECASE),
        re.compile(rf"我(?:是|当|做)(?:一名|一个|个)({_ZH_STOP}{{2,20}})"),
        re.compile(rf"我的(?:工作|职业)是({_ZH_STOP}{{2,20}})"),
        re.compile(rf"我在({_ZH_STOP}{{2,20}}?)(?:工作|上班)"),
    ]),
    ("location", "location", 7, "Lives in {}", [
        re.compile(rf"\bI(?: live|'m living| am living) in ({_STOP}{{2,40}})", re.IGNORECASE),
        re.compile(rf"\bI(?:'m| am) from ({_STOP}{{2,40}})", re.IGNORECASE),
        re.compile(rf"我(?:住在|来自|住)({_ZH_STOP}{{2,10}})"),
    ]),
    ("hobby", None, 6, "Likes {}", [
        re.compile(rf"\bI (?:really )?(?:like|love|enjoy) ({_STOP}{{2,40}})", re.IGNORECASE),
        re.compile(rf"我(?:很|非常|特别)?(?:喜欢|热爱|爱)({_ZH_STOP}{{2,15}})"),
    ]),
]

_CATEGORY_PATTERNS = [
    ("identity", re.compile(r"\b(?:name|named|called)\b|叫|名字|姓", re.IGNORECASE)),
    ("work", re.compile(r"\b(?:work|works|working|job|career|company|office|employer|profession)\b|工作|职业|公司|上班|从事", re.IGNORECASE)),
    ("location", re.compile(r"\b(?:live|lives|living|from|city|country|hometown|moved)\b|住|来自|城市|地方", re.IGNORECASE)),
    ("age", re.compile(r"\b(?:years old|age|born|birthday)\b|岁|年龄|出生|生日", re.IGNORECASE)),
    ("family", re.compile(r"\b(?:family|parents?|mother|father|wife|husband|child|children|kids?|son|daughter|married)\b|家人|父母|孩子|老婆|老公|结婚", re.IGNORECASE)),
    ("hobby", re.compile(r"\b(?:hobby|hobbies|enjoys?|likes?|loves?|often|habit)\b|喜欢|爱好|兴趣|经常|习惯", re.IGNORECASE)),
    ("preference", re.compile(r"\b(?:prefers?|hates?|dislikes?|wants?|wish|hopes?)\b|讨厌|偏好|想要|希望", re.IGNORECASE)),
    ("event", re.compile(r"\b(?:happened|experienced|met|recently|last time|went)\b|发生|经历|遇到|最近|上次", re.IGNORECASE)),
]


def _clean_value(value: str) -> str:
    value = _TRAILING_CLAUSE_RE.sub("", value.strip())
    return value.strip(" '\"")


def extract_immediate_facts(text: str) -> List[ExtractedFact]:
    """At most one fact per rule; single-valued attributes are keyed by attribute name."""
    facts = []
    for category, subject_key, importance, label, patterns in _IMMEDIATE_RULES:
        for pattern in patterns:
            match = pattern.search(text or "")
            if not match:
                continue
            value = _clean_value(match.group(1))
            if len(value) < 2 and not value.isdigit():
                continue
            subject = subject_key or f"likes:{value.lower()}"[:SUBJECT_MAX_CHARS]
            facts.append(ExtractedFact(category, subject, label.format(value), importance))
            break
    return facts


def categorize_fact(fact: str) -> str:
    """First matching keyword category, else 'other'."""
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(fact):
            return category
    return "other"


def fact_subject(fact: str) -> str:
    return fact.strip()[:SUBJECT_MAX_CHARS]
