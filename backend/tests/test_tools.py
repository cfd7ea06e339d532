"""Unit tests for tool names, meta-tool schemas and the tool registry."""
from __future__ import annotations

import re
import unittest

from src.tool_orchestrator.models import ToolDef, UserInputFieldType, UserInputResponse
from src.tool_orchestrator.tools import (
    REQUEST_USER_INPUT,
    MetaTool,
    RequestUserInputTool,
    ToolKind,
    ToolRegistry,
    format_user_input_response,
    sanitize_tool_name,
)

NAME_RE = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


class TestSanitizeToolName(unittest.TestCase):
    def test_replaces_separators_and_drops_invalid(self) -> None:
        self.assertEqual(sanitize_tool_name("github:star.repo"), "github_star_repo")
        self.assertEqual(sanitize_tool_name("weird/name!"), "weirdname")

    def test_truncates(self) -> None:
        self.assertEqual(len(sanitize_tool_name("X" * 100)), 64)


class TestToolRegistry(unittest.TestCase):
    def test_initial_tools(self) -> None:
        registry = ToolRegistry()
        names = [s["function"]["name"] for s in registry.schemas()]
        meta = MetaTool()
        for name in (meta.search_tools, meta.manage_connections, meta.multi_execute,
                     meta.remote_workbench, meta.remote_bash, REQUEST_USER_INPUT):
            self.assertIn(name, names)
        self.assertEqual(registry.resolve(meta.search_tools), (meta.search_tools, ToolKind.META))
        self.assertEqual(registry.resolve(REQUEST_USER_INPUT), (REQUEST_USER_INPUT, ToolKind.LOCAL))

    def test_multi_execute_schema_has_memory(self) -> None:
        meta = MetaTool()
        multi = next(d for d in meta.definitions() if d.name == meta.multi_execute)
        self.assertIn("memory", multi.parameters["properties"])

    def test_prefix_is_configurable(self) -> None:
        meta = MetaTool(prefix="ACME_")
        self.assertEqual(meta.multi_execute, "ACME_MULTI_EXECUTE_TOOL")

    def test_discovered_tools_are_added_once(self) -> None:
        registry = ToolRegistry()
        before = len(registry)
        tool = ToolDef(name="GITHUB_STAR_REPO", parameters={"type": "object", "properties": {}})
        self.assertEqual(registry.add_discovered([tool, tool]), 1)
        self.assertEqual(len(registry), before + 1)
        self.assertEqual(registry.resolve("GITHUB_STAR_REPO"), ("GITHUB_STAR_REPO", ToolKind.SESSION))

    def test_exposed_names_are_valid_and_resolve_to_slug(self) -> None:
        registry = ToolRegistry()
        registry.add_discovered([ToolDef(name="acme:crm.find contact"), ToolDef(name="acme_crm_find_contact")])
        names = [s["function"]["name"] for s in registry.schemas()]
        self.assertTrue(all(NAME_RE.match(n) for n in names))
        self.assertEqual(len(names), len(set(names)))
        self.assertEqual(registry.resolve("acme_crm_find_contact"), ("acme:crm.find contact", ToolKind.SESSION))
        self.assertEqual(registry.resolve("acme_crm_find_contact_1"), ("acme_crm_find_contact", ToolKind.SESSION))

    def test_unknown_tool(self) -> None:
        self.assertIsNone(ToolRegistry().resolve("NOPE"))


class TestRequestUserInput(unittest.TestCase):
    def test_parse_arguments(self) -> None:
        request = RequestUserInputTool().parse({
            "provider": "pipedrive",
            "fields": [
                {"name": "subdomain", "label": "Company subdomain", "type": "url"},
                {"name": "region", "label": "Region", "type": "dropdown", "required": False},
                "garbage",
            ],
            "authConfigId": "ac_123",
            "logoUrl": "https://logo",
        })
        self.assertEqual(request.provider, "pipedrive")
        self.assertEqual([f.name for f in request.fields], ["subdomain", "region"])
        self.assertEqual(request.fields[0].type, UserInputFieldType.URL)
        self.assertTrue(request.fields[0].required)
        self.assertEqual(request.fields[1].type, UserInputFieldType.TEXT)
        self.assertFalse(request.fields[1].required)
        self.assertEqual(request.auth_config_id, "ac_123")
        self.assertEqual(request.logo_url, "https://logo")

    def test_summarize(self) -> None:
        tool = RequestUserInputTool()
        request = tool.parse({"provider": "pipedrive", "fields": [{"name": "subdomain", "label": "Subdomain"}]})
        self.assertEqual(tool.summarize(request), "To connect pipedrive, I need the following details: Subdomain.")

    def test_format_response(self) -> None:
        text = format_user_input_response(
            UserInputResponse(request_id="r1", provider="pipedrive", values={"subdomain": "acme"}, auth_config_id="ac_1")
        )
        self.assertIn("- subdomain: acme", text)
        self.assertIn("ac_1", text)


if __name__ == "__main__":
    unittest.main()
