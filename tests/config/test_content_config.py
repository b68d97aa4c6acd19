"""
Tests for content_config: YAML loading, workflow compilation and settings.
"""

from pathlib import Path
from uuid import uuid4

import pytest
import yaml

from content_config import (
    DEFAULT_WORKFLOWS_PATH,
    get_settings,
    load_workflow_definitions,
)
from content_config.compiler import compile_workflow, compile_workflow_set
from content_config.loader import parse_settings, parse_stage, parse_workflow_file
from content_config.schema import StageDef, WorkflowConfigSet, WorkflowDef
from content_kernel.exceptions import MalformedWorkflowError


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestBundledConfiguration:

    def test_default_settings_load(self):
        settings = get_settings(environ={})
        assert settings.retention_days >= 90
        assert "admin" in settings.admin_roles
        assert settings.log_level == "INFO"

    def test_bundled_workflows_compile(self):
        definitions = load_workflow_definitions()
        by_name = {d.name: d for d in definitions}
        standard = by_name["standard_review"]
        assert [s.approver_role for s in standard.stages] == ["creator", "editor", "marketer"]
        assert all(s.required for s in standard.stages)
        fast = by_name["social_fast_track"]
        assert fast.stage(2).required is False
        assert all(d.definition_hash for d in definitions)

    def test_bundled_workflow_file_has_checksum(self):
        config_set = parse_workflow_file(DEFAULT_WORKFLOWS_PATH)
        assert len(config_set.checksum) == 64
        assert config_set.source == str(DEFAULT_WORKFLOWS_PATH)


class TestSettingsOverrides:

    def test_environment_overrides_file(self, tmp_path):
        path = _write_yaml(tmp_path / "core.yaml", {"core": {"max_retries": 2}})
        settings = get_settings(
            path,
            environ={
                "CONTENT_CORE_MAX_RETRIES": "7",
                "CONTENT_CORE_ADMIN_ROLES": "ops, admin",
                "CONTENT_CORE_LOG_LEVEL": "debug",
            },
        )
        assert settings.max_retries == 7
        assert settings.admin_roles == ("ops", "admin")
        assert settings.log_level == "DEBUG"

    def test_invalid_environment_value(self, tmp_path):
        path = _write_yaml(tmp_path / "core.yaml", {"core": {}})
        with pytest.raises(ValueError, match="CONTENT_CORE_RETENTION_DAYS"):
            get_settings(path, environ={"CONTENT_CORE_RETENTION_DAYS": "ninety"})

    def test_retention_below_floor_rejected(self, tmp_path):
        path = _write_yaml(tmp_path / "core.yaml", {"core": {"retention_days": 30}})
        with pytest.raises(ValueError, match="retention_days"):
            get_settings(path, environ={})

    def test_admin_roles_as_comma_string(self):
        settings = parse_settings({"core": {"admin_roles": "admin,campaign_manager"}})
        assert settings.admin_roles == ("admin", "campaign_manager")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_settings(tmp_path / "absent.yaml", environ={})


class TestWorkflowCompilation:

    def test_stage_requires_integer_number(self):
        with pytest.raises(ValueError):
            parse_stage({"stage": "one", "role": "editor"})

    def test_required_must_be_boolean(self):
        with pytest.raises(ValueError):
            parse_stage({"stage": 1, "role": "editor", "required": "no"})

    def test_approver_id_parsed_to_uuid(self):
        approver = uuid4()
        definition = compile_workflow(WorkflowDef(
            name="w",
            campaign_id="c",
            stages=(StageDef(stage=1, approver_id=str(approver)),),
        ))
        assert definition.stage(1).approver_id == approver

    def test_bad_approver_id(self):
        with pytest.raises(MalformedWorkflowError, match="not a UUID"):
            compile_workflow(WorkflowDef(
                name="w", campaign_id="c", stages=(StageDef(stage=1, approver_id="bob"),),
            ))

    def test_gap_in_yaml_stages(self, tmp_path):
        path = _write_yaml(tmp_path / "wf.yaml", {
            "workflows": [{
                "name": "broken",
                "campaign_id": "c",
                "stages": [{"stage": 1, "role": "a"}, {"stage": 3, "role": "b"}],
            }],
        })
        with pytest.raises(MalformedWorkflowError):
            load_workflow_definitions(path)

    def test_duplicate_workflow_in_campaign(self):
        source = WorkflowDef(name="w", campaign_id="c", stages=(StageDef(1, role="a"),))
        with pytest.raises(MalformedWorkflowError, match="defined twice"):
            compile_workflow_set(WorkflowConfigSet(workflows=(source, source)))

    def test_hash_ignores_stage_order_in_source(self):
        a = WorkflowDef(
            name="w", campaign_id="c",
            stages=(StageDef(1, role="x"), StageDef(2, role="y")),
        )
        b = WorkflowDef(
            name="w", campaign_id="c",
            stages=(StageDef(2, role="y"), StageDef(1, role="x")),
        )
        assert compile_workflow(a).definition_hash == compile_workflow(b).definition_hash

    def test_hash_changes_with_layout(self):
        a = WorkflowDef(name="w", campaign_id="c", stages=(StageDef(1, role="x"),))
        b = WorkflowDef(
            name="w", campaign_id="c", stages=(StageDef(1, role="x", required=False),),
        )
        assert compile_workflow(a).definition_hash != compile_workflow(b).definition_hash
