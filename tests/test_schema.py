"""
Tests for export schema validation.

Tests cover:
- Envelope validation for plain and encrypted archives
- Dataset validation and forward compatibility
- JSON-or-string fields and timestamp checks
- Version whitelist
"""

from __future__ import annotations

import json
import unittest

from factories import (
    TS,
    make_board,
    make_dataset,
    make_role,
    make_system_settings,
    make_ticket,
    plain_envelope,
)

from punt_backup.backup.errors import InvalidStructureError, UnsupportedVersionError
from punt_backup.backup.schema import (
    COMPATIBLE_VERSIONS,
    EXPORT_VERSION,
    LEGACY_EXPORT_VERSION,
    Dataset,
    EncryptedArchive,
    PlainArchive,
    check_version,
    validate_dataset,
    validate_envelope,
)


class TestValidateEnvelope(unittest.TestCase):
    """Tests for validate_envelope."""

    def test_plain_envelope(self) -> None:
        """Test a plain envelope with an embedded dataset."""
        envelope = validate_envelope(plain_envelope(make_board()))

        self.assertIsInstance(envelope, PlainArchive)
        self.assertEqual(envelope.version, EXPORT_VERSION)
        self.assertEqual(envelope.exported_by, "u1")
        self.assertEqual(len(envelope.data.users), 2)
        self.assertEqual(len(envelope.data.columns), 4)

    def test_encrypted_envelope(self) -> None:
        """Test an encrypted envelope with all four fields."""
        data = {
            "version": EXPORT_VERSION,
            "exportedAt": TS,
            "encrypted": True,
            "ciphertext": "YQ==",
            "salt": "Yg==",
            "nonce": "Yw==",
            "authTag": "ZA==",
        }

        envelope = validate_envelope(data)

        self.assertIsInstance(envelope, EncryptedArchive)
        self.assertEqual(envelope.nonce, "Yw==")
        self.assertEqual(envelope.auth_tag, "ZA==")
        self.assertIsNone(envelope.options)

    def test_encrypted_envelope_legacy_iv(self) -> None:
        """Test that "iv" is accepted in place of "nonce"."""
        data = {
            "version": LEGACY_EXPORT_VERSION,
            "exportedAt": TS,
            "encrypted": True,
            "ciphertext": "YQ==",
            "salt": "Yg==",
            "iv": "Yw==",
            "authTag": "ZA==",
        }

        envelope = validate_envelope(data)

        self.assertEqual(envelope.nonce, "Yw==")

    def test_encrypted_envelope_missing_field(self) -> None:
        """Test that an encrypted envelope needs every encryption field."""
        data = {
            "version": EXPORT_VERSION,
            "exportedAt": TS,
            "encrypted": True,
            "ciphertext": "YQ==",
            "salt": "Yg==",
            "nonce": "Yw==",
        }

        with self.assertRaises(InvalidStructureError) as ctx:
            validate_envelope(data)

        self.assertEqual(str(ctx.exception), "Invalid export file structure")
        self.assertTrue(ctx.exception.errors)

    def test_plain_envelope_without_data(self) -> None:
        """Test that a plain envelope needs a dataset."""
        envelope = plain_envelope(make_board())
        del envelope["data"]

        with self.assertRaises(InvalidStructureError):
            validate_envelope(envelope)

    def test_missing_encrypted_flag(self) -> None:
        """Test that the encrypted flag is required."""
        envelope = plain_envelope(make_board())
        del envelope["encrypted"]

        with self.assertRaises(InvalidStructureError):
            validate_envelope(envelope)

    def test_not_an_object(self) -> None:
        """Test non-object JSON values."""
        for value in ([], "backup", 42, None):
            with self.assertRaises(InvalidStructureError):
                validate_envelope(value)

    def test_options_parsed(self) -> None:
        """Test export options with camelCase keys."""
        envelope = validate_envelope(
            plain_envelope(
                make_board(),
                options={"includeAttachments": True, "includeAvatars": False},
            )
        )

        self.assertTrue(envelope.options.include_attachments)
        self.assertFalse(envelope.options.include_avatars)


class TestValidateDataset(unittest.TestCase):
    """Tests for validate_dataset."""

    def test_empty_dataset(self) -> None:
        """Test a dataset with every collection empty."""
        dataset = validate_dataset(make_dataset())

        self.assertIsNone(dataset.system_settings)
        self.assertEqual(dataset.tickets, [])

    def test_ticket_activities_optional(self) -> None:
        """Test that legacy datasets without ticketActivities validate."""
        data = make_dataset()
        del data["ticketActivities"]

        dataset = validate_dataset(data)

        self.assertEqual(dataset.ticket_activities, [])

    def test_missing_collection(self) -> None:
        """Test that other collections are required."""
        data = make_dataset()
        del data["tickets"]

        with self.assertRaises(InvalidStructureError) as ctx:
            validate_dataset(data)

        self.assertEqual(str(ctx.exception), "Decrypted data has invalid structure")

    def test_unknown_keys_ignored(self) -> None:
        """Test forward compatibility with extra keys."""
        data = make_board()
        data["futureCollection"] = [{"id": "x"}]
        data["users"][0]["favouriteColour"] = "green"

        dataset = validate_dataset(data)

        self.assertEqual(len(dataset.users), 2)

    def test_json_fields_accept_native_values(self) -> None:
        """Test that list/object JSON fields become JSON text."""
        data = make_dataset(
            projects=[],
            roles=[make_role("r1", "p1", permissions=["a", "b"])],
            systemSettings=make_system_settings(defaultRolePermissions={"member": ["a"]}),
        )

        dataset = validate_dataset(data)

        self.assertEqual(json.loads(dataset.roles[0].permissions), ["a", "b"])
        self.assertEqual(
            json.loads(dataset.system_settings.default_role_permissions),
            {"member": ["a"]},
        )

    def test_json_fields_accept_strings(self) -> None:
        """Test that JSON fields given as strings are kept as-is."""
        data = make_dataset(roles=[make_role("r1", "p1", permissions='["a"]')])

        dataset = validate_dataset(data)

        self.assertEqual(dataset.roles[0].permissions, '["a"]')

    def test_system_settings_size_aliases(self) -> None:
        """Test the MB-suffixed field names."""
        dataset = validate_dataset(make_dataset(systemSettings=make_system_settings()))

        self.assertEqual(dataset.system_settings.max_image_size_mb, 10)
        self.assertEqual(dataset.system_settings.max_document_size_mb, 25)

    def test_invalid_timestamp_rejected(self) -> None:
        """Test that a non-ISO timestamp fails validation."""
        data = make_board()
        data["users"][0]["createdAt"] = "yesterday"

        with self.assertRaises(InvalidStructureError):
            validate_dataset(data)

    def test_wrong_type_rejected(self) -> None:
        """Test that a string where a number belongs fails validation."""
        data = make_dataset(tickets=[make_ticket("t1", "p1", "c1", number="one")])

        with self.assertRaises(InvalidStructureError):
            validate_dataset(data)

    def test_ticket_label_ids_default(self) -> None:
        """Test that labelIds may be omitted."""
        ticket = make_ticket("t1", "p1", "c1")
        del ticket["labelIds"]
        del ticket["resolvedAt"]

        dataset = validate_dataset(make_dataset(tickets=[ticket]))

        self.assertEqual(dataset.tickets[0].label_ids, [])
        self.assertIsNone(dataset.tickets[0].resolved_at)

    def test_dangling_references_allowed(self) -> None:
        """Test that referential consistency is not checked."""
        ticket = make_ticket("t1", "missing-project", "missing-column", labelIds=["nope"])

        dataset = validate_dataset(make_dataset(tickets=[ticket]))

        self.assertEqual(dataset.tickets[0].label_ids, ["nope"])

    def test_round_trip_aliases(self) -> None:
        """Test that dumping by alias restores camelCase keys."""
        dataset = validate_dataset(make_board())
        dumped = dataset.model_dump(mode="json", by_alias=True)

        self.assertIn("projectMembers", dumped)
        self.assertIn("createdAt", dumped["users"][0])
        self.assertEqual(Dataset.model_validate(dumped), dataset)


class TestCheckVersion(unittest.TestCase):
    """Tests for the version whitelist."""

    def test_compatible_versions(self) -> None:
        """Test that legacy and current versions are accepted."""
        self.assertEqual(COMPATIBLE_VERSIONS, ("1.0.0", "1.1.0"))
        for version in COMPATIBLE_VERSIONS:
            check_version(version)

    def test_unknown_version(self) -> None:
        """Test that other versions are rejected with the version named."""
        with self.assertRaises(UnsupportedVersionError) as ctx:
            check_version("2.0.0")

        self.assertEqual(ctx.exception.version, "2.0.0")
        self.assertIn("2.0.0", str(ctx.exception))
        self.assertIn(EXPORT_VERSION, str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
