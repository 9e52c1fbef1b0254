import pytest

from clusterwms.config import Settings
from clusterwms.core.clustering import parse_clustering_spec
from clusterwms.core.ratio_search import DynamicRatioSearch
from clusterwms.core.static_clustering import StaticFixedSize, StaticPosteriorMerge
from clusterwms.errors import ConfigurationError


def test_hc_spec():
    strategy = parse_clustering_spec("hc-2-3", Settings())
    assert isinstance(strategy, StaticFixedSize)
    assert strategy.tasks_per_cluster == 2
    assert strategy.nodes_per_cluster == 3
    assert strategy.describe() == "hc-2-3"
    assert strategy.individual_mode is False


def test_hc_merge_spec():
    strategy = parse_clustering_spec("hc-4-1:merge", Settings())
    assert isinstance(strategy, StaticPosteriorMerge)
    assert strategy.base.tasks_per_cluster == 4
    assert strategy.levels_per_decision == 2
    assert strategy.describe() == "hc-4-1:merge"


def test_hc_overlap_comes_from_settings():
    assert parse_clustering_spec("hc-1-1", Settings(overlap=True)).overlap is True
    assert parse_clustering_spec("hc-1-1", Settings()).overlap is False


def test_zhang_spec_defaults():
    strategy = parse_clustering_spec("zhang", Settings())
    assert isinstance(strategy, DynamicRatioSearch)
    assert strategy.overlap is False
    assert strategy.plimit is False


def test_zhang_spec_options():
    strategy = parse_clustering_spec("zhang:overlap:plimit", Settings())
    assert strategy.overlap is True
    assert strategy.plimit is True
    assert strategy.describe() == "zhang:overlap:plimit"


def test_zhang_flags_from_settings():
    strategy = parse_clustering_spec("zhang", Settings(overlap=True, plimit=True, leeway_max_requeries=3))
    assert strategy.overlap is True
    assert strategy.plimit is True
    assert strategy.max_leeway_requeries == 3


@pytest.mark.parametrize(
    "spec",
    [
        "hc-1",
        "hc-1-2-3",
        "hc-0-1",
        "hc-1-0",
        "hc-a-1",
        "hc-1-1:overlap",
        "zhang-3",
        "zhang:bogus",
        "dfjs-10-1",
        "",
    ],
)
def test_invalid_specs(spec):
    with pytest.raises(ConfigurationError, match="Invalid clustering spec"):
        parse_clustering_spec(spec, Settings())
