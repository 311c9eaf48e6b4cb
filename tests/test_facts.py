"""
Tests for immediate fact extraction and fact categorisation.
"""

import pytest

from recall.core.facts import categorize_fact, extract_immediate_facts, fact_subject


def by_category(text):
    return {f.category: f for f in extract_immediate_facts(text)}


@pytest.mark.parametrize("text,category,content", [
    ("My name is Priya", "identity", "Name is Priya"),
    ("Please call me Sam.", "identity", "Name is Sam"),
    ("I'm 34 years old", "age", "Age is 34"),
    ("I work as a nurse at the clinic", "work", "Works as nurse at the clinic"),
    ("I'm from Toronto, originally", "location", "Lives in Toronto"),
    ("I really enjoy baking bread", "hobby", "Likes baking bread"),
    ("我的名字是李华", "identity", "Name is 李华"),
    ("我是一名医生。", "work", "Works as 医生"),
    ("我在银行工作", "work", "Works as 银行"),
    ("我来自上海", "location", "Lives in 上海"),
    ("我非常喜欢游泳", "hobby", "Likes 游泳"),
])
def test_immediate_facts(text, category, content):
    """Test one fact per supported pattern in English and Chinese."""
    facts = by_category(text)
    assert facts[category].content == content


def test_trailing_clause_trimmed():
    """Test that a following clause is not part of the value."""
    facts = by_category("I live in Denver and I have a dog")
    assert facts["location"].content == "Lives in Denver"


def test_single_valued_subjects():
    """Test that single-valued attributes are keyed by attribute name."""
    facts = by_category("My name is Ana. I'm 40 years old. I work as a pilot. I live in Lisbon.")

    assert facts["identity"].subject == "name"
    assert facts["age"].subject == "age"
    assert facts["work"].subject == "occupation"
    assert facts["location"].subject == "location"


def test_importance_by_category():
    """Test that identity outranks hobbies."""
    facts = by_category("My name is Ana and I love jazz")
    assert facts["identity"].importance == 9
    assert facts["hobby"].importance == 6
    assert facts["hobby"].subject == "likes:jazz"


def test_no_facts_in_small_talk():
    """Test that ordinary text yields nothing."""
    assert extract_immediate_facts("What's the weather like today?") == []
    assert extract_immediate_facts("") == []


@pytest.mark.parametrize("fact,category", [
    ("User is called Jo", "identity"),
    ("Works at a bank", "work"),
    ("Moved to Berlin last year", "location"),
    ("Birthday is in May", "age"),
    ("Has a daughter", "family"),
    ("Enjoys hiking", "hobby"),
    ("Prefers tea over coffee", "preference"),
    ("Recently went to Japan", "event"),
    ("养了一只猫", "other"),
    ("在公司上班", "work"),
    ("最近经历了搬家", "event"),
])
def test_categorize_fact(fact, category):
    """Test keyword categorisation in order of precedence."""
    assert categorize_fact(fact) == category


def test_fact_subject_truncated():
    """Test that subjects are the first 50 characters."""
    assert fact_subject("  " + "x" * 80) == "x" * 50
