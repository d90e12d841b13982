import json

import pytest

from vrp_solver.utils.config import Config
from vrp_solver.utils.errors import ConfigurationError


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.get('search.population_size') == 4
        assert config.get('objective.mode') == "lexicographic"
        assert config.get('constraints.time_windows') == "hard"
        assert config.get('operators.recreate') == ["regret", "cheapest", "random"]

    def test_dict_source_is_merged_with_defaults(self):
        source = {"search": {"seed": 1}}
        config = Config(source)
        assert config.get('search.seed') == 1
        assert config.get('search.workers') == 1
        assert "workers" not in source["search"]

    def test_missing_key_returns_default(self):
        config = Config()
        assert config.get('search.nope') is None
        assert config.get('nope.deeper', 5) == 5

    def test_load_and_save(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"objective": {"mode": "pareto"}}))

        config = Config(str(path))
        assert config.get('objective.mode') == "pareto"

        config.set('search.max_generations', 5)
        config.save()
        assert Config(str(path)).get('search.max_generations') == 5

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = Config(str(tmp_path / "absent.json"))
        assert config.get('search.population_size') == 4

    def test_save_without_path(self):
        with pytest.raises(ConfigurationError):
            Config().save()

    @pytest.mark.parametrize("key, value", [
        ("objective.mode", "random"),
        ("constraints.time_windows", "sometimes"),
        ("search.population_size", 0),
        ("search.workers", 0),
        ("operators.max_ruin_ratio", 0.01),
        ("operators.ruin", []),
    ])
    def test_invalid_values(self, key, value):
        with pytest.raises(ConfigurationError):
            Config().set(key, value)

    def test_str_is_json(self):
        assert json.loads(str(Config()))["search"]["seed"] == 42
