"""Tests for listing fingerprints."""

from listing_alerts.fingerprint import fingerprint, round_price
from listing_alerts.models import SourceName

ADDRESS = "lima miraflores departamento con vista al mar"


class TestFingerprint:
    """Tests for fingerprint stability."""

    def test_length_and_hex(self):
        """Test that the digest is 32 hex characters."""
        digest = fingerprint(SourceName.URBANIA, ADDRESS, 2500, 80, 2)
        assert len(digest) == 32
        int(digest, 16)

    def test_same_price_bucket(self):
        """Test that prices within one bucket hash the same."""
        assert fingerprint(SourceName.URBANIA, ADDRESS, 2501, 80, 2) == fingerprint(
            SourceName.URBANIA, ADDRESS, 2549, 80, 2
        )

    def test_crossing_bucket_boundary(self):
        """Test that crossing a 100-unit boundary changes the hash."""
        assert fingerprint(SourceName.URBANIA, ADDRESS, 2549, 80, 2) != fingerprint(
            SourceName.URBANIA, ADDRESS, 2551, 80, 2
        )

    def test_source_is_part_of_identity(self):
        """Test that the same unit on two portals gets two fingerprints."""
        assert fingerprint(SourceName.URBANIA, ADDRESS, 2500) != fingerprint(
            SourceName.PROPERATI, ADDRESS, 2500
        )

    def test_integral_float_area(self):
        """Test that 80 and 80.0 square meters hash the same."""
        assert fingerprint(SourceName.URBANIA, ADDRESS, 2500, 80) == fingerprint(
            SourceName.URBANIA, ADDRESS, 2500, 80.0
        )

    def test_address_is_renormalized(self):
        """Test that accents and case in the address do not matter."""
        assert fingerprint(SourceName.URBANIA, "Miraflores, Perú", 2500) == fingerprint(
            SourceName.URBANIA, "miraflores peru", 2500
        )

    def test_round_price(self):
        """Test half-up rounding to the nearest 100."""
        assert round_price(2549) == 2500
        assert round_price(2550) == 2600
        assert round_price(40) == 0
