from moneybird_agent.models.platform import Contact
from moneybird_agent.tools.fuzzy_matcher import FuzzyMatcher


def test_normalize_drops_legal_suffix():
    matcher = FuzzyMatcher()

    assert matcher.normalize("  Acme   B.V. ") == "acme"
    assert matcher.normalize("Globex GmbH") == "globex"
    assert matcher.normalize("") == ""


def test_match_name():
    matcher = FuzzyMatcher(threshold=70)

    assert matcher.match_name("Acme B.V.", "ACME bv") == (True, 100.0)
    is_match, score = matcher.match_name("Acme", "Initech")
    assert not is_match
    assert score < 70


def test_rank_contacts_best_first():
    contacts = [
        Contact(id="C1", company_name="Initech"),
        Contact(id="C2", company_name="Acme B.V."),
        Contact(id="C3", firstname="Jan", lastname="Jansen"),
    ]

    ranked = FuzzyMatcher().rank_contacts("ACME", contacts, limit=2)

    assert len(ranked) == 2
    assert ranked[0][0].id == "C2"
    assert ranked[0][1] == 100.0


def test_rank_without_supplier_name_keeps_platform_order():
    contacts = [Contact(id=f"C{n}") for n in range(5)]

    ranked = FuzzyMatcher().rank_contacts("", contacts, limit=3)

    assert [contact.id for contact, _ in ranked] == ["C0", "C1", "C2"]
    assert FuzzyMatcher().rank_contacts("Acme", []) == []
