"""
Tests for the ledger error envelope.
"""

from app.core.exceptions import InsufficientSupplyError, NotFoundError


class TestErrorEnvelope:

    def test_plain_error(self):
        error = NotFoundError("token not found: b-1")

        assert error.status_code == 404
        assert error.to_dict() == {
            "success": False,
            "error": "not_found",
            "detail": "token not found: b-1",
        }

    def test_context_fields_are_included(self):
        error = InsufficientSupplyError(available=3, requested=5)
        body = error.to_dict()

        assert body["error"] == "insufficient_supply"
        assert body["available"] == 3
        assert body["requested"] == 5
        assert "available 3, requested 5" in body["detail"]
