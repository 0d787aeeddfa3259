"""
Plan File Loader Unit Tests
"""

import json

import pytest

from agent_orchestrator.task_graph import dump_graph_file, load_graph_file, validate

PLAN_YAML = """
product: shop
version: "2.0.0"
tasks:
  - id: design
    name: Design
    agent: architect
    estimatedDurationMinutes: 30
    produces:
      - name: design.md
        type: doc
  - id: api
    name: API
    agent: backend
    dependsOn: [design]
    parallelOk: true
    consumes:
      - artifact: design.md
        requiredFromTask: design
"""


class TestLoader:
    """load_graph_file / dump_graph_file"""

    def test_load_yaml(self, tmp_path):
        """YAML plans are parsed with safe_load"""
        path = tmp_path / "plan.yaml"
        path.write_text(PLAN_YAML, encoding="utf-8")

        graph = load_graph_file(path)
        assert graph.product == "shop"
        assert graph.version == "2.0.0"
        assert graph.task_ids == ["design", "api"]
        assert graph.get_task("api").depends_on == {"design"}
        assert validate(graph).valid

    def test_load_json(self, tmp_path, diamond_graph):
        """JSON plans round-trip through dump_graph_file"""
        path = tmp_path / "plan.json"
        dump_graph_file(diamond_graph, path)

        assert json.loads(path.read_text(encoding="utf-8"))["product"] == "shop"
        graph = load_graph_file(path)
        assert graph.task_ids == diamond_graph.task_ids

    def test_dump_yaml(self, tmp_path, diamond_graph):
        """YAML output can be loaded back"""
        path = tmp_path / "plan.yml"
        dump_graph_file(diamond_graph, path)
        assert load_graph_file(path).get_task("D").depends_on == {"B", "C"}

    def test_non_mapping_rejected(self, tmp_path):
        """A list at top level is not a plan"""
        path = tmp_path / "plan.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_graph_file(path)

    def test_missing_product_rejected(self, tmp_path):
        """A plan without a product is a ValueError, not a KeyError"""
        path = tmp_path / "plan.yaml"
        path.write_text("tasks:\n  - {id: a, name: a, agent: x}\n", encoding="utf-8")
        with pytest.raises(ValueError, match="malformed"):
            load_graph_file(path)

    def test_task_without_id_rejected(self, tmp_path):
        """Every task needs an id"""
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"product": "shop", "tasks": [{"name": "a"}]}), encoding="utf-8")
        with pytest.raises(ValueError, match="malformed"):
            load_graph_file(path)
