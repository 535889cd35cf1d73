"""
Tests for the Ban Registry.
"""
import pytest

from council_engine.models.db_models import BannedIdentifierDB, IdentifierType
from council_engine.services.governance import BanRegistry, IdentifierBanned
from council_engine.services.governance.ban_registry import normalize_identifier

from conftest import NOW


class TestNormalizeIdentifier:

    @pytest.mark.parametrize("identifier_type,raw,expected", [
        (IdentifierType.EMAIL, "  Ana@Example.COM ", "ana@example.com"),
        (IdentifierType.PHONE, "+34 600-123-456", "+34600123456"),
        (IdentifierType.PHONE, "(600) 123 456", "600123456"),
        (IdentifierType.TAX_ID, "12.345.678-z", "12345678Z"),
        (IdentifierType.EMAIL, "   ", None),
        (IdentifierType.PHONE, "n/a", None),
    ])
    def test_canonical_forms(self, identifier_type, raw, expected):
        assert normalize_identifier(identifier_type, raw) == expected


class TestBanRegistry:

    def test_ban_copies_all_identifiers(self, db, make_member):
        member = make_member(phone="+34 600 123 456", tax_id="12345678z")

        added = BanRegistry(db).ban_member(member, NOW)
        db.commit()

        assert {e.identifier_type for e in added} == {
            IdentifierType.EMAIL, IdentifierType.PHONE, IdentifierType.TAX_ID,
        }

    def test_missing_identifiers_skipped(self, db, make_member):
        member = make_member()
        added = BanRegistry(db).ban_member(member, NOW)
        assert [e.identifier_type for e in added] == [IdentifierType.EMAIL]

    def test_ban_is_idempotent(self, db, make_member):
        member = make_member(phone="+34 600 123 456")
        registry = BanRegistry(db)
        registry.ban_member(member, NOW)
        db.commit()

        assert registry.ban_member(member, NOW) == []
        assert db.query(BannedIdentifierDB).count() == 2

    def test_lookup_uses_canonical_form(self, db, make_member):
        member = make_member(tax_id="12345678z")
        registry = BanRegistry(db)
        registry.ban_member(member, NOW)
        db.commit()

        assert registry.is_banned(tax_id="12.345.678-Z")
        assert not registry.is_banned(tax_id="87654321A")
        assert not registry.is_banned()

    def test_registration_gate(self, db, make_member):
        member = make_member(phone="+34 600 123 456")
        registry = BanRegistry(db)
        registry.ban_member(member, NOW)
        db.commit()

        with pytest.raises(IdentifierBanned) as exc_info:
            registry.check_registration(email="someone.new@example.com", phone="+34600123456")
        assert "phone" in exc_info.value.message
        assert "600" not in exc_info.value.message

        registry.check_registration(email="someone.new@example.com")
