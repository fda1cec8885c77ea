"""Tests for the masking engine — patterns + tokens + vault + masker."""

import itertools
import re
import sys, os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from data_masker import (
    DataMasker, Dictionary, MappingEntry, Rule, SessionVault, TokenGenerator,
    TokenCollisionError, TokenExhaustedError, default_rules,
)
from data_masker.patterns import scan_segments

AMOUNT_TOKEN = re.compile(r"\[AMOUNT_[0-9a-f]{8}\]")
AMOUNT_USD_TOKEN = re.compile(r"\[AMOUNT_USD_[0-9a-f]{8}\]")


def _counting_source():
    counter = itertools.count(1)
    return lambda n: next(counter).to_bytes(n, "big")


def _clients() -> Dictionary:
    return Dictionary.from_terms("clients", ["Acme Corp", "Globex"], "business", "[CLIENT_")


class _ExplodingPattern:
    def finditer(self, text):
        raise RecursionError("maximum recursion depth exceeded")


# ── Patterns ─────────────────────────────────────────────────────────

def test_default_rule_order():
    names = [r.name for r in default_rules()]
    assert names == ["currency_jpy", "currency_usd", "email", "phone_jp", "campaign_name", "ip_address"]


def test_default_rule_policies():
    rules = {r.name: r for r in default_rules()}
    assert rules["currency_jpy"].reversible and rules["currency_jpy"].prefix == "[AMOUNT_"
    assert not rules["email"].reversible
    assert rules["email"].fixed_replacement == "[EMAIL_MASKED]"
    assert rules["ip_address"].fixed_replacement == "[IP_MASKED]"


def test_rule_fallbacks():
    rule = Rule.compile("r", "c", r"x")
    assert rule.prefix == "[MASKED_"
    assert rule.fixed_replacement == "[MASKED]"


def test_dictionary_dedupes_case_insensitively():
    d = Dictionary.from_terms("clients", ["Acme Corp", "acme corp", "  ", "Globex"], "business", "[CLIENT_")
    assert d.terms == ("Acme Corp", "Globex")
    assert len(d.patterns) == 2
    assert d.source == "dictionary:clients"


def test_scan_segments_skips_protected_and_empty_matches():
    segments = [("a1 ", False), ("[X_1]", True), ("b2", False)]
    found = scan_segments(re.compile(r"\d*"), segments)
    assert [m.group() for m in found[0]] == ["1"]
    assert found[1] == []
    assert [m.group() for m in found[2]] == ["2"]


def test_compiled_rule_is_reusable_across_calls():
    masker = DataMasker()
    first = masker.mask("s", "¥100 and ¥200")
    second = masker.mask("s", "¥300")
    assert first.mask_count == 2
    assert second.mask_count == 1


# ── Token Generator ──────────────────────────────────────────────────

def test_token_format():
    token = TokenGenerator().next_token("[AMOUNT_")
    assert AMOUNT_TOKEN.fullmatch(token)


def test_token_bytes_configurable():
    token = TokenGenerator(6).next_token("[X_")
    assert re.fullmatch(r"\[X_[0-9a-f]{12}\]", token)


def test_token_bytes_minimum():
    with pytest.raises(ValueError):
        TokenGenerator(3)


def test_token_source_injectable():
    gen = TokenGenerator(source=lambda n: b"\xab" * n)
    assert gen.next_token("[T_") == "[T_abababab]"


# ── Vault ────────────────────────────────────────────────────────────

def test_vault_get_or_create_idempotent():
    vault = SessionVault()
    assert vault.get_or_create("s") is True
    assert vault.get_or_create("s") is False
    assert vault.lookup_all("s") == []
    assert len(vault) == 1


def test_vault_lookup_unknown_session():
    assert SessionVault().lookup_all("nope") is None


def test_vault_insert_rejects_existing_token():
    vault = SessionVault()
    vault.insert("s", MappingEntry("[A_00000001]", "¥1", "financial", "currency_jpy"))
    with pytest.raises(TokenCollisionError):
        vault.insert("s", MappingEntry("[A_00000001]", "¥2", "financial", "currency_jpy"))
    assert vault.dump("s") == {"[A_00000001]": "¥1"}


def test_vault_regenerates_on_collision():
    source = iter([b"\x00" * 4, b"\x00" * 4, b"\x00\x00\x00\x01"])
    vault = SessionVault(TokenGenerator(source=lambda n: next(source)))
    first = vault.issue("s", "[A_", "¥1", "financial", "currency_jpy")
    second = vault.issue("s", "[A_", "¥2", "financial", "currency_jpy")
    assert first.token == "[A_00000000]"
    assert second.token == "[A_00000001]"


def test_vault_exhaustion_is_a_hard_failure():
    vault = SessionVault(TokenGenerator(source=lambda n: b"\x00" * n), max_attempts=3)
    vault.issue("s", "[A_", "¥1", "financial", "currency_jpy")
    with pytest.raises(TokenExhaustedError) as exc:
        vault.issue("s", "[A_", "¥2", "financial", "currency_jpy")
    assert exc.value.attempts == 3
    assert vault.size("s") == 1


def test_vault_tokens_scoped_per_session():
    vault = SessionVault(TokenGenerator(source=lambda n: b"\x00" * n))
    a = vault.issue("a", "[A_", "¥1", "financial", "currency_jpy")
    b = vault.issue("b", "[A_", "¥2", "financial", "currency_jpy")
    assert a.token == b.token
    assert vault.dump("a") == {a.token: "¥1"}
    assert vault.dump("b") == {b.token: "¥2"}


def test_vault_clear():
    vault = SessionVault()
    vault.issue("s", "[A_", "¥1", "financial", "currency_jpy")
    assert vault.clear("s") is True
    assert vault.clear("s") is False
    assert vault.lookup_all("s") is None
    assert vault.sessions() == []


def test_vault_discard_and_has_token():
    vault = SessionVault(TokenGenerator(source=_counting_source()))
    first = vault.issue("s", "[A_", "¥1", "financial", "currency_jpy")
    second = vault.issue("s", "[A_", "¥2", "financial", "currency_jpy")
    assert vault.has_token("s", first.token)
    assert not vault.has_token("other", first.token)
    assert vault.discard("s", [second.token, "[A_ffffffff]"]) == 1
    assert not vault.has_token("s", second.token)
    assert vault.dump("s") == {first.token: "¥1"}
    assert vault.discard("nope", [first.token]) == 0


def test_vault_concurrent_issue_same_session():
    vault = SessionVault()

    def work():
        for i in range(200):
            vault.issue("shared", "[A_", f"¥{i}", "financial", "currency_jpy")

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    entries = vault.lookup_all("shared")
    assert len(entries) == 1600
    assert len({e.token for e in entries}) == 1600


def test_vault_concurrent_sessions_isolated():
    vault = SessionVault()

    def work(sid):
        for i in range(100):
            vault.issue(sid, "[A_", f"{sid}-{i}", "financial", "currency_jpy")

    threads = [threading.Thread(target=work, args=(f"s{n}",)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(vault.sessions()) == [f"s{n}" for n in range(6)]
    for n in range(6):
        assert all(v.startswith(f"s{n}-") for v in vault.dump(f"s{n}").values())


# ── Masker (text) ────────────────────────────────────────────────────

def test_mask_currency():
    masker = DataMasker()
    result = masker.mask("test-session", "The cost is ¥1,234,567 and $100.00")
    assert result.mask_count == 2
    assert "¥1,234,567" not in result.text
    assert "$100.00" not in result.text
    assert len(AMOUNT_TOKEN.findall(result.text)) == 1
    assert len(AMOUNT_USD_TOKEN.findall(result.text)) == 1

    restored = masker.unmask("test-session", result.text)
    assert restored.text == "The cost is ¥1,234,567 and $100.00"
    assert restored.unmask_count == 2


def test_mask_pii_irreversibly():
    masker = DataMasker()
    text = "Contact: test@example.com, Phone: 03-1234-5678"
    masked, count = masker.mask("test-session-2", text)
    assert count == 2
    assert masked == "Contact: [EMAIL_MASKED], Phone: [PHONE_MASKED]"
    assert masker.vault.size("test-session-2") == 0

    unmasked, unmask_count = masker.unmask("test-session-2", masked)
    assert "test@example.com" not in unmasked
    assert "03-1234-5678" not in unmasked
    assert unmask_count == 0


def test_irreversible_literal_shared_by_all_matches():
    masker = DataMasker()
    result = masker.mask("s", "a@x.com and b@y.org")
    assert result.text == "[EMAIL_MASKED] and [EMAIL_MASKED]"
    assert result.mask_count == 2
    assert masker.get_stats("s").total == 0


def test_mask_empty_text_creates_session():
    masker = DataMasker()
    result = masker.mask("s", "")
    assert (result.text, result.mask_count) == ("", 0)
    assert masker.vault.has_session("s")


def test_mask_count_matches_spans():
    masker = DataMasker(dictionaries=[_clients()])
    result = masker.mask("s", "¥1 ¥2 $3 a@b.co for Globex and Acme Corp")
    assert result.mask_count == 6
    assert masker.get_stats("s").total == 5


def test_dictionary_round_trip_keeps_casing():
    masker = DataMasker(dictionaries=[_clients()])
    text = "acme corp renewed; ACME CORP expanded; Globex churned"
    result = masker.mask("s", text)
    assert result.mask_count == 3
    assert "acme" not in result.text.lower()
    assert result.text.count("[CLIENT_") == 3
    assert masker.unmask("s", result.text).text == text


def test_dictionary_runs_after_rules_and_skips_tokens():
    amount = Dictionary.from_terms("labels", ["AMOUNT"], "business", "[LABEL_")
    masker = DataMasker(dictionaries=[amount])
    result = masker.mask("s", "AMOUNT: ¥100")
    assert result.mask_count == 2
    assert len(AMOUNT_TOKEN.findall(result.text)) == 1
    assert result.text.startswith("[LABEL_")
    assert masker.unmask("s", result.text).text == "AMOUNT: ¥100"


def test_later_rules_never_match_inside_replacements():
    # Sequential all-digit suffixes would look like phone numbers to phone_jp
    masker = DataMasker(token_generator=TokenGenerator(source=_counting_source()))
    result = masker.mask("s", "¥100 then ¥200")
    assert result.text == "[AMOUNT_00000001] then [AMOUNT_00000002]"
    assert result.mask_count == 2
    assert masker.unmask("s", result.text).text == "¥100 then ¥200"


def test_round_trip_with_regex_metacharacters():
    terms = Dictionary.from_terms("products", ["C++ (Beta)", "a.b*c"], "business", "[PRODUCT_")
    masker = DataMasker(rules=[], dictionaries=[terms])
    text = "Ship C++ (Beta) and a.b*c, not abbbc"
    result = masker.mask("s", text)
    assert result.mask_count == 2
    assert "abbbc" in result.text
    assert masker.unmask("s", result.text).text == text


def test_rule_with_metacharacter_prefix():
    rule = Rule.compile("sku", "identifier", r"SKU-\d+", token_prefix="[S.K*U_")
    masker = DataMasker(rules=[rule])
    result = masker.mask("s", "item SKU-991 sold")
    assert masker.unmask("s", result.text).text == "item SKU-991 sold"


def test_disabled_rule_is_skipped():
    rule = Rule.compile("usd", "financial", r"\$\d+", token_prefix="[USD_", enabled=False)
    masker = DataMasker(rules=[rule])
    assert masker.mask("s", "$5").text == "$5"


def test_failing_rule_is_isolated():
    boom = Rule(name="boom", category="pii", pattern=_ExplodingPattern(), reversible=False, replacement="[X]")
    email = next(r for r in default_rules() if r.name == "email")
    masker = DataMasker(rules=[boom, email])
    result = masker.mask("s", "mail a@b.com")
    assert result.failed_rules == ["boom"]
    assert result.text == "mail [EMAIL_MASKED]"
    assert result.mask_count == 1


def test_exhaustion_propagates_from_mask():
    vault = SessionVault(TokenGenerator(source=lambda n: b"\x00" * n), max_attempts=2)
    masker = DataMasker(vault=vault)
    assert masker.vault is vault
    with pytest.raises(TokenExhaustedError):
        masker.mask("s", "¥1 and ¥2")


def test_failed_mask_leaves_no_mappings_behind():
    vault = SessionVault(TokenGenerator(source=lambda n: b"\x00" * n), max_attempts=2)
    masker = DataMasker(vault=vault)
    kept = masker.mask("s", "$9").text
    with pytest.raises(TokenExhaustedError):
        # ¥1 gets a token before ¥2 runs out of attempts
        masker.mask("s2", "¥1 and ¥2")
    assert masker.get_stats("s2").total == 0
    assert masker.get_stats("s").total == 1
    assert masker.unmask("s", kept).text == "$9"


def test_injected_empty_vault_is_used():
    vault = SessionVault(TokenGenerator(12))
    assert len(vault) == 0
    masker = DataMasker(vault=vault)
    assert masker.vault is vault
    token = masker.mask("s", "¥1").text
    assert re.fullmatch(r"\[AMOUNT_[0-9a-f]{24}\]", token)
    assert vault.has_session("s")


def test_remask_creates_new_tokens():
    masker = DataMasker()
    first = masker.mask("s", "¥100")
    second = masker.mask("s", "¥100")
    assert first.text != second.text
    assert masker.get_stats("s").total == 2


def test_masking_masked_text_again_keeps_tokens():
    masker = DataMasker(token_generator=TokenGenerator(source=_counting_source()))
    text = "campaign: spring costs ¥100 / mail a@b.com"
    once = masker.mask("s", text).text
    assert once == "[CAMPAIGN_00000002] costs [AMOUNT_00000001] / mail [EMAIL_MASKED]"
    twice = masker.mask("s", once)
    assert twice.text == once
    assert twice.mask_count == 0
    assert masker.get_stats("s").total == 2
    assert masker.unmask("s", twice.text).text == text


def test_masking_mixed_text_only_masks_new_values():
    masker = DataMasker(token_generator=TokenGenerator(source=_counting_source()))
    token = masker.mask("s", "¥100").text
    result = masker.mask("s", f"{token} and ¥200")
    assert result.text == "[AMOUNT_00000001] and [AMOUNT_00000002]"
    assert result.mask_count == 1
    assert masker.unmask("s", result.text).text == "¥100 and ¥200"


def test_foreign_token_shapes_are_still_scanned():
    masker = DataMasker()
    # Looks like a token but this session never issued it
    result = masker.mask("s", "[campaign: spring]")
    assert result.mask_count == 1
    assert result.text.startswith("[[CAMPAIGN_")


# ── Unmasker ─────────────────────────────────────────────────────────

def test_unmask_unknown_session_is_soft():
    masker = DataMasker()
    result = masker.unmask("never-seen", "[AMOUNT_deadbeef]")
    assert result.text == "[AMOUNT_deadbeef]"
    assert result.unmask_count == 0
    assert result.session_found is False


def test_unmask_counts_every_occurrence():
    masker = DataMasker()
    token = masker.mask("s", "¥100").text
    result = masker.unmask("s", f"{token} vs {token}, absent [AMOUNT_00000000]")
    assert result.text == "¥100 vs ¥100, absent [AMOUNT_00000000]"
    assert result.unmask_count == 2
    assert result.session_found is True


def test_unmask_restores_newest_first():
    masker = DataMasker()
    inner = masker.mask("s", "¥100").text
    # A later mapping whose original carries an earlier token
    masker.vault.insert("s", MappingEntry(
        token="[NOTE_0000abcd]", original=f"paid {inner}", category="business", source="note",
    ))
    result = masker.unmask("s", "[NOTE_0000abcd]")
    assert result.text == "paid ¥100"
    assert result.unmask_count == 2


def test_session_isolation():
    masker = DataMasker()
    masked = masker.mask("a", "cost ¥9,999").text
    masker.mask("b", "cost ¥1")
    assert masker.unmask("b", masked).text == masked
    assert masker.unmask("a", masked).text == "cost ¥9,999"


def test_clear_session():
    masker = DataMasker()
    masked = masker.mask("s", "¥100").text
    masker.clear_session("s")
    assert masker.get_stats("s").total == 0
    masker.clear_session("s")
    assert masker.unmask("s", masked).session_found is False
    # Fresh, empty session afterwards
    masker.mask("s", "plain")
    assert masker.get_stats("s").total == 0


# ── Structural masking ───────────────────────────────────────────────

def test_mask_value_example_object():
    masker = DataMasker()
    obj = {"name": "Test Campaign", "cost": "¥500,000", "email": "user@test.com"}
    masked = masker.mask_value("s", obj)
    assert list(masked) == ["name", "cost", "email"]
    assert masked["name"] == "Test Campaign"
    assert AMOUNT_TOKEN.fullmatch(masked["cost"])
    assert masked["email"] == "[EMAIL_MASKED]"
    assert masker.unmask("s", masked["cost"]).text == "¥500,000"


def test_mask_value_preserves_shape():
    masker = DataMasker()
    value = {
        "rows": [{"cost": "¥500", "clicks": 10, "ok": True, "note": None}],
        "tags": ("plain", "$5"),
        "¥100": "key stays",
    }
    masked = masker.mask_value("s", value)
    assert set(masked) == {"rows", "tags", "¥100"}
    row = masked["rows"][0]
    assert list(row) == ["cost", "clicks", "ok", "note"]
    assert row["clicks"] == 10 and isinstance(row["clicks"], int)
    assert row["ok"] is True
    assert row["note"] is None
    assert isinstance(masked["tags"], tuple) and len(masked["tags"]) == 2
    assert masked["tags"][0] == "plain"
    assert masked["tags"][1].startswith("[AMOUNT_USD_")
    assert masked["¥100"] == "key stays"


def test_mask_value_numbers():
    order_id = Rule.compile("order_id", "identifier", r"\b9\d{5}\b", token_prefix="[ORDER_")
    masker = DataMasker(rules=[order_id])
    masked = masker.mask_value("s", [912345, 1.5, 42])
    assert isinstance(masked[0], str) and masked[0].startswith("[ORDER_")
    assert masked[1] == 1.5
    assert masked[2] == 42
    assert masker.unmask("s", masked[0]).text == "912345"


def test_mask_value_sets_keep_their_type():
    masker = DataMasker()
    masked = masker.mask_value("s", {"tags": {"plain", "¥100"}, "ids": frozenset({"$5"})})
    assert isinstance(masked["tags"], set)
    assert "plain" in masked["tags"] and "¥100" not in masked["tags"]
    (token,) = masked["tags"] - {"plain"}
    assert masker.unmask("s", token).text == "¥100"
    assert isinstance(masked["ids"], frozenset)
    (usd,) = masked["ids"]
    assert usd.startswith("[AMOUNT_USD_")


def test_mask_value_huge_int_passes_through():
    huge = 10 ** 5000
    masker = DataMasker(rules=[Rule.compile("nines", "identifier", r"9{3}", token_prefix="[N_")])
    assert masker.mask_value("s", [huge]) == [huge]
    assert masker.mask_value("s", 999).startswith("[N_")


def test_mask_value_generates_one_session():
    masker = DataMasker()
    masker.mask_value(None, {"a": "¥1", "b": ["¥2", {"c": "$3"}]})
    assert len(masker.vault) == 1
    (sid,) = masker.vault.sessions()
    assert sid.startswith("session_")
    assert masker.get_stats(sid).total == 3


# ── Stats ────────────────────────────────────────────────────────────

def test_stats_by_category_and_source():
    masker = DataMasker(dictionaries=[_clients()])
    masker.mask("s", "¥1 $2 $3 campaign: spring_sale Globex a@b.com")
    stats = masker.get_stats("s")
    assert stats.total == 5
    assert stats.by_category == {"financial": 3, "identifier": 1, "business": 1}
    assert stats.by_source == {
        "currency_jpy": 1, "currency_usd": 2, "campaign_name": 1, "dictionary:clients": 1,
    }


def test_stats_unknown_session():
    stats = DataMasker().get_stats("nope")
    assert stats.to_dict() == {"total": 0, "by_category": {}, "by_source": {}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
