"""
Tests for crm_config.get_active_config and its wiring into the services.

Validates:
- Packaged defaults load without an overlay
- An overlay YAML file is merged section by section
- DATABASE_URL and CRM_LOG_LEVEL override the files
- Unknown keys and out-of-range values raise ValueError
- Document prefixes from the config reach the numbering service
"""

from decimal import Decimal

import pytest
import yaml

from crm_config import get_active_config
from crm_config.loader import merge_dicts, parse_config
from crm_config.schema import DocumentSettings, LifecycleConfig
from crm_services.lifecycle_orchestrator import LifecycleOrchestrator


def _write(tmp_path, data, name="overlay.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_packaged_defaults(self):
        config = get_active_config(environ={})

        assert config.database_url == "sqlite+pysqlite:///:memory:"
        assert config.log_level == "INFO"
        assert config.documents.share_link_ttl_days == 30
        assert config.documents.invoice_prefix == "INV"
        assert config.notifications.timeout_seconds == 20
        assert config.signatures.allowed_media_types == (
            "image/png",
            "image/jpeg",
            "image/svg+xml",
        )

    def test_defaults_match_dataclass_defaults(self):
        assert get_active_config(environ={}) == LifecycleConfig()


class TestOverlay:

    def test_overlay_merges_sections(self, tmp_path):
        path = _write(tmp_path, {"documents": {"share_link_ttl_days": 14}, "log_level": "debug"})

        config = get_active_config(path, environ={})

        assert config.documents.share_link_ttl_days == 14
        assert config.documents.number_width == 3
        assert config.log_level == "DEBUG"

    def test_overlay_from_environment(self, tmp_path):
        path = _write(tmp_path, {"notifications": {"timeout_seconds": 5}})

        config = get_active_config(environ={"CRM_CONFIG_FILE": str(path)})

        assert config.notifications.timeout_seconds == 5

    def test_env_overrides_files(self, tmp_path):
        path = _write(tmp_path, {"database_url": "sqlite:///file.db"})

        config = get_active_config(
            path,
            environ={"DATABASE_URL": "postgresql://crm@localhost/crm", "CRM_LOG_LEVEL": "warning"},
        )

        assert config.database_url == "postgresql://crm@localhost/crm"
        assert config.log_level == "WARNING"

    def test_missing_overlay(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml", environ={})

    def test_empty_overlay(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert get_active_config(path, environ={}) == LifecycleConfig()


class TestValidation:

    @pytest.mark.parametrize(
        "data",
        [
            {"mystery": 1},
            {"documents": {"share_link_days": 7}},
            {"documents": {"share_link_ttl_days": 0}},
            {"documents": {"number_width": 12}},
            {"notifications": {"timeout_seconds": 0}},
            {"signatures": {"max_image_bytes": -1}},
        ],
    )
    def test_rejects(self, data):
        with pytest.raises(ValueError):
            parse_config(data)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ValueError, match="mapping"):
            get_active_config(path, environ={})

    def test_merge_is_recursive(self):
        merged = merge_dicts({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}})
        assert merged == {"a": {"b": 1, "c": 3}}


class TestWiring:

    def test_prefixes_reach_numbering(
        self, session, deterministic_clock, sales_user, lead_id, roof_line_items,
        customer_payload, company_payload,
    ):
        config = LifecycleConfig(
            documents=DocumentSettings(contract_prefix="AGR", number_width=4)
        )
        lifecycle = LifecycleOrchestrator(session, config, clock=deterministic_clock)
        quote = lifecycle.quotes.create_quote(
            company_id=sales_user.company_id,
            lead_id=lead_id,
            title="Roof replacement",
            line_items=roof_line_items,
            actor_id=sales_user.user_id,
            tax_rate=Decimal("0.08"),
        )
        lifecycle.signing.generate_share_link(quote.id, sales_user)
        lifecycle.quotes.mark_sent(quote.id, sales_user.user_id)

        lifecycle.signing.sign_customer(quote.id, customer_payload)
        result = lifecycle.signing.sign_company(quote.id, company_payload, sales_user)

        assert lifecycle.contracts.get(result.contract_id).contract_number == "AGR-2025-0001"
