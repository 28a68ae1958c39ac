"""
Shared fixtures.

Collaborators are MagicMocks spec'd on the real classes, so a test that
calls a method the real class does not have fails loudly.
"""

import io
import itertools
import logging
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from PIL import Image

from core.blockfrost_client import BlockfrostClient
from core.wallet_client import WalletClient
from logging_config import APP_LOGGER_NAME
from models.pricing import PriceConfig
from models.records import DiplomaRecord, DiplomaTemplate, SchoolProfile, StudentProfile
from models.session import AuthUser, SessionContext, SessionStatus, SessionTokens
from services.storage_service import StorageService


@pytest.fixture
def school():
    return SchoolProfile(
        id="school-1",
        user_id="user-1",
        name="Université de Test",
        email="admin@test.edu",
        public_wallet="addr_test1qschool",
    )


@pytest.fixture
def students():
    return [
        StudentProfile(user_id="stu-aaaa-1111", full_name="Alice Martin", student_number="M001", level="Master"),
        StudentProfile(user_id="stu-bbbb-2222", full_name="Bob Diallo", student_number="M002", level="Licence"),
        StudentProfile(user_id="stu-cccc-3333", full_name="Chloé Ndiaye", student_number="M003"),
    ]


@pytest.fixture
def template(school):
    return DiplomaTemplate(
        id="tpl-1",
        school_id=school.id,
        name="Classic",
        width=1123,
        height=794,
        elements=[{"type": "text", "content": "{{student_name}}", "x": 50, "y": 40}],
    )


@pytest.fixture
def png_bytes():
    """A real 8x4 PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def auth_context(school):
    return SessionContext(
        status=SessionStatus.AUTHENTICATED,
        user=AuthUser(id=school.user_id, email=school.email),
        school_profile=school,
        tokens=SessionTokens(access_token="access-token", refresh_token="refresh-token"),
    )


@pytest.fixture
def price_config():
    return PriceConfig(
        network_fee_percent=Decimal("2"),
        storage_free_limit=100,
        storage_price_per_1000=Decimal("10"),
        base_price=Decimal("25.00"),
    )


@pytest.fixture
def storage(price_config):
    """StorageService double that persists diplomas with sequential ids."""
    mock = MagicMock(spec=StorageService)
    mock.count_diplomas.return_value = 0
    mock.get_price_config.return_value = price_config
    mock.get_policy.return_value = None
    mock.save_policy.side_effect = lambda policy: policy
    mock.create_revenue_records.side_effect = lambda records: records

    ids = itertools.count(1)
    mock.created = []

    def create_diploma(record: DiplomaRecord) -> DiplomaRecord:
        record.id = f"diploma-{next(ids)}"
        mock.created.append(record)
        return record

    mock.create_diploma.side_effect = create_diploma
    return mock


@pytest.fixture
def content_store():
    mock = MagicMock(spec=BlockfrostClient)
    mock.upload_bytes.return_value = "ipfs://QmImageHash"
    mock.upload_json.side_effect = lambda document, filename="metadata.json": f"ipfs://Qm{filename}"
    mock.wait_for_confirmation.return_value = 1
    return mock


@pytest.fixture
def wallet():
    mock = MagicMock(spec=WalletClient)
    mock.is_connected = True
    mock.address = "addr_test1qschool"
    mock.get_balance.return_value = 50_000_000
    mock.get_utxos.return_value = [{"tx_hash": "utxo-1", "index": 0}]
    mock.derive_policy.return_value = {"policy_id": "policy-abc", "script": {"type": "sig"}}
    mock.build_mint_transaction.return_value = "unsigned-cbor"
    mock.sign_transaction.return_value = "signed-cbor"
    mock.submit_transaction.side_effect = [f"tx-{i}" for i in range(1, 20)]
    return mock


@pytest.fixture
def app_log(caplog):
    """
    caplog attached to the application logger.

    setup_logging() stops "diploma_issuer" from propagating to the root
    logger, so caplog's root handler alone would miss its records.
    """
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    previous_level = app_logger.level
    previous_propagate = app_logger.propagate
    app_logger.addHandler(caplog.handler)
    app_logger.setLevel(logging.DEBUG)
    app_logger.propagate = False
    yield caplog
    app_logger.removeHandler(caplog.handler)
    app_logger.setLevel(previous_level)
    app_logger.propagate = previous_propagate
