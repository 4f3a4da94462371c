"""Tests for the allowed-pairs transfer policy."""

from uuid import uuid4

import pytest

from certify_kernel.domain.enums import OrganizationType as T
from certify_kernel.domain.transfer_policy import TransferPolicy
from certify_kernel.exceptions import ErrorKind, TransferNotAllowedError


class TestDefaultPolicy:
    @pytest.mark.parametrize(
        "source, dest",
        [
            (T.MANUFACTURER, T.DISTRIBUTOR),
            (T.MANUFACTURER, T.HOSPITAL),
            (T.DISTRIBUTOR, T.DISTRIBUTOR),
            (T.DISTRIBUTOR, T.HOSPITAL),
        ],
    )
    def test_allowed_pairs(self, source, dest):
        TransferPolicy().check(uuid4(), source, uuid4(), dest)

    @pytest.mark.parametrize(
        "source, dest",
        [
            (T.HOSPITAL, T.DISTRIBUTOR),
            (T.HOSPITAL, T.HOSPITAL),
            (T.DISTRIBUTOR, T.MANUFACTURER),
            (T.MANUFACTURER, T.MANUFACTURER),
            (T.MANUFACTURER, T.ADMIN),
        ],
    )
    def test_forbidden_pairs(self, source, dest):
        with pytest.raises(TransferNotAllowedError) as exc_info:
            TransferPolicy().check(uuid4(), source, uuid4(), dest)
        assert exc_info.value.kind == ErrorKind.FORBIDDEN
        assert exc_info.value.code == "INVALID_RECIPIENT"

    def test_self_transfer_rejected(self):
        org_id = uuid4()
        with pytest.raises(TransferNotAllowedError) as exc_info:
            TransferPolicy().check(org_id, T.DISTRIBUTOR, org_id, T.DISTRIBUTOR)
        assert exc_info.value.reason == "cannot transfer to self"

    def test_hospitals_have_no_destinations(self):
        assert TransferPolicy().allowed_destinations(T.HOSPITAL) == frozenset()


class TestCustomPolicy:
    def test_from_mapping(self):
        policy = TransferPolicy.from_mapping({"manufacturer": ["hospital"]})

        assert policy.allows(T.MANUFACTURER, T.HOSPITAL)
        assert not policy.allows(T.MANUFACTURER, T.DISTRIBUTOR)
        assert not policy.allows(T.DISTRIBUTOR, T.HOSPITAL)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            TransferPolicy.from_mapping({"pharmacy": ["hospital"]})
