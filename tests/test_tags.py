"""
Unit tests for RRD tag handling.

Tests filename encoding, tag condition chains and the three file layout
strategies against real files in a temporary directory.
"""

import pytest

from tsdb_query import (
    FileNameStrategy,
    FolderStrategy,
    NoTagsStrategy,
    TagCondition,
    TagConditionGroup,
    TagResolutionError,
    TagSearch,
    create_tag_strategy,
)
from tsdb_query.tags import decode_filename, encode_filename, sanitize_tag_value


def touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b'')
    return path


class TestFilenameEncoding:
    """Test cases for tag-encoded file names."""

    def test_round_trip(self):
        """Test encoding then decoding a tagged name."""
        name = encode_filename('cpu_usage', {'region': 'us-east', 'host': 'server_1'})
        assert name == 'cpu_usage_host-server.1_region-us.east.rrd'
        assert decode_filename('/rrd/' + name) == (
            'cpu_usage', {'host': 'server.1', 'region': 'us.east'}
        )

    def test_untagged_name(self):
        """Test a measurement without tags."""
        assert encode_filename('cpu_usage') == 'cpu_usage.rrd'
        assert decode_filename('cpu_usage.rrd') == ('cpu_usage', {})

    def test_unsafe_characters_removed(self):
        """Test characters outside the safe set are dropped."""
        assert encode_filename('cpu/usage:with?invalid*chars') == 'cpuusagewithinvalidchars.rrd'

    def test_tag_value_coercion(self):
        """Test booleans, None and numbers as tag values."""
        assert sanitize_tag_value(True) == '1'
        assert sanitize_tag_value(False) == ''
        assert sanitize_tag_value(None) == ''
        assert sanitize_tag_value(1.5) == '1.5'
        with pytest.raises(TagResolutionError, match="scalar"):
            sanitize_tag_value(['a'])

    def test_name_too_long(self):
        """Test the file name length limit."""
        with pytest.raises(TagResolutionError, match="Filename exceeds 255 characters"):
            encode_filename('m', {'tag': 'x' * 300})

    def test_hyphenated_measurement(self):
        """Test decoding anchored on a known measurement containing '_' and '-'."""
        assert decode_filename('disk_io-wait.rrd') == ('disk', {'io': 'wait'})
        assert decode_filename('disk_io-wait.rrd', 'disk_io-wait') == ('disk_io-wait', {})
        assert decode_filename('/rrd/disk_io-wait_host-a.rrd', 'disk_io-wait') == (
            'disk_io-wait', {'host': 'a'}
        )

    def test_anchor_not_matching(self):
        """Test a longer measurement is not read as the anchor plus tags."""
        assert decode_filename('cpu_usage_host-a.rrd', 'cpu') == ('cpu_usage', {'host': 'a'})
        assert decode_filename('cpu2_host-a.rrd', 'cpu') == ('cpu2', {'host': 'a'})


class TestTagCondition:
    """Test cases for single tag conditions."""

    def test_equality_compares_sanitized_values(self):
        """Test '-' and '_' compare equal after sanitising."""
        assert TagCondition('region', '=', 'us-east').matches('us.east')
        assert TagCondition('region', '==', 'us_east').matches('us-east')
        assert TagCondition('region', '!=', 'us-east').matches('eu.west')

    def test_sets(self):
        """Test IN and NOT IN."""
        assert TagCondition('host', 'in', ['a', 'b']).matches('b')
        assert TagCondition('host', 'NOT IN', ['a', 'b']).matches('c')
        assert not TagCondition('host', 'not  in', ['a', 'b']).matches('a')

    def test_regex(self):
        """Test bare and delimited patterns."""
        assert TagCondition('host', 'REGEX', '^server').matches('server1')
        assert TagCondition('host', 'REGEX', '/^SERVER/i').matches('server1')
        assert not TagCondition('host', 'REGEX', '^db').matches('server1')

    def test_between(self):
        """Test numeric ranges."""
        assert TagCondition('rack', 'BETWEEN', [1, 10]).matches('5')
        assert not TagCondition('rack', 'BETWEEN', [1, 10]).matches('abc')
        with pytest.raises(TagResolutionError, match="requires two values"):
            TagCondition('rack', 'BETWEEN', [1]).matches('5')

    def test_unsupported_operator(self):
        """Test error on an operator tags do not support."""
        with pytest.raises(TagResolutionError, match="Operator LIKE not supported"):
            TagCondition('host', 'LIKE', 'a').matches('a')


class TestTagSearch:
    """Test cases for left-to-right chain evaluation."""

    TAGS = {'a': '1', 'b': '2', 'c': '3'}

    def test_empty_chain_matches(self):
        """Test that no conditions match everything."""
        assert TagSearch.search(self.TAGS, [])

    def test_missing_tag_never_matches(self):
        """Test conditions on absent tags."""
        assert not TagSearch.search(self.TAGS, [TagCondition('d', '=', '4')])
        assert not TagSearch.search(self.TAGS, [TagCondition('d', '!=', '4')])

    def test_and_then_or(self):
        """Test 'A AND B OR C' evaluates as '(A AND B) OR C'."""
        conditions = [
            TagCondition('a', '=', '1'),
            TagCondition('b', '=', 'x'),
            TagCondition('c', '=', '3', 'OR'),
        ]
        assert TagSearch.search(self.TAGS, conditions)

    def test_or_then_and(self):
        """Test 'A OR B AND C' evaluates as '(A OR B) AND C'."""
        conditions = [
            TagCondition('a', '=', '1'),
            TagCondition('b', '=', 'x', 'OR'),
            TagCondition('c', '=', 'x'),
        ]
        assert not TagSearch.search(self.TAGS, conditions)

    def test_unsupported_operator_always_reported(self):
        """Test every condition is evaluated even after the result is decided."""
        conditions = [
            TagCondition('a', '=', '1'),
            TagCondition('b', 'LIKE', 'x', 'OR'),
        ]
        with pytest.raises(TagResolutionError):
            TagSearch.search(self.TAGS, conditions)
        with pytest.raises(TagResolutionError):
            TagSearch.search(self.TAGS, [TagCondition('missing', 'LIKE', 'x')])

    def test_grouped_search_defaults_to_and(self):
        """Test groups without an operator must all match."""
        groups = [
            [TagCondition('a', '=', '1'), TagCondition('b', '=', '2')],
            TagConditionGroup([TagCondition('c', '=', 'x')]),
        ]
        assert not TagSearch.grouped_search(self.TAGS, groups)
        assert TagSearch.grouped_search(self.TAGS, groups[:1])
        assert TagSearch.grouped_search(self.TAGS, [])

    def test_grouped_search_or(self):
        """Test '(a=x AND b=2) OR (c=3)' and a failing OR of two groups."""
        groups = [
            TagConditionGroup([TagCondition('a', '=', 'x'), TagCondition('b', '=', '2')]),
            TagConditionGroup([TagCondition('c', '=', '3')], 'or'),
        ]
        assert TagSearch.grouped_search(self.TAGS, groups)

        groups[1] = TagConditionGroup([TagCondition('c', '=', 'x')], 'OR')
        assert not TagSearch.grouped_search(self.TAGS, groups)

    def test_grouped_search_left_to_right(self):
        """Test 'G1 OR G2 AND G3' evaluates as '(G1 OR G2) AND G3'."""
        groups = [
            TagConditionGroup([TagCondition('a', '=', '1')]),
            TagConditionGroup([TagCondition('b', '=', 'x')], 'OR'),
            TagConditionGroup([TagCondition('c', '=', 'x')], 'AND'),
        ]
        assert not TagSearch.grouped_search(self.TAGS, groups)

    def test_invalid_group_operator(self):
        """Test error on an unknown group operator."""
        with pytest.raises(TagResolutionError, match="Invalid group operator: XOR"):
            TagConditionGroup([], 'xor')


class TestFileNameStrategy:
    """Test cases for tags encoded in file names."""

    @pytest.fixture
    def strategy(self, tmp_path):
        return FileNameStrategy(f'{tmp_path}/')

    def test_base_dir_requires_slash(self, tmp_path):
        """Test the base directory must end with a slash."""
        with pytest.raises(TagResolutionError, match="must end with a slash"):
            FileNameStrategy(str(tmp_path))

    def test_get_file_path(self, strategy, tmp_path):
        """Test the file path for a tag set."""
        path = strategy.get_file_path('cpu_usage', {'host': 'server1'})
        assert path == f'{tmp_path}/cpu_usage_host-server1.rrd'

    def test_or_chain(self, strategy, tmp_path):
        """Test a three-way OR chain across tags."""
        for tags in (
            {'env': 'prod', 'region': 'ap-south'},
            {'env': 'dev', 'region': 'eu-west'},
            {'env': 'dev', 'region': 'ap-south'},
        ):
            touch(tmp_path / encode_filename('cpu_usage', tags))

        conditions = [
            TagCondition('env', '=', 'prod'),
            TagCondition('region', '=', 'us-east', 'OR'),
            TagCondition('region', '=', 'eu-west', 'OR'),
        ]
        paths = strategy.resolve_file_paths('cpu_usage', conditions)
        assert paths == [
            f'{tmp_path}/cpu_usage_env-dev_region-eu.west.rrd',
            f'{tmp_path}/cpu_usage_env-prod_region-ap.south.rrd',
        ]

    def test_measurement_prefix(self, strategy, tmp_path):
        """Test resolution by measurement prefix."""
        touch(tmp_path / 'cpu_usage_host-a.rrd')
        touch(tmp_path / 'cpu_idle_host-a.rrd')
        touch(tmp_path / 'mem_host-a.rrd')
        assert len(strategy.resolve_file_paths('cpu', [])) == 2
        assert strategy.resolve_file_paths('disk', []) == []

    def test_find_measurements(self, strategy, tmp_path):
        """Test measurements having matching files."""
        touch(tmp_path / 'cpu_usage_host-a.rrd')
        touch(tmp_path / 'mem_host-b.rrd')
        touch(tmp_path / 'disk_host-c.rrd')
        conditions = [TagCondition('host', 'IN', ['a', 'b'])]
        assert strategy.find_measurements_by_tags(conditions) == ['cpu_usage', 'mem']

    def test_exact_measurement(self, strategy, tmp_path):
        """Test exact resolution skips measurements sharing the prefix."""
        for name in ('cpu_host-a.rrd', 'cpu2_host-a.rrd', 'cpu_usage_host-a.rrd'):
            touch(tmp_path / name)
        conditions = [TagCondition('host', '=', 'a')]

        assert len(strategy.resolve_file_paths('cpu', conditions)) == 3
        assert strategy.resolve_file_paths('cpu', conditions, exact=True) == [
            f'{tmp_path}/cpu_host-a.rrd'
        ]

    def test_exact_measurement_without_file(self, strategy, tmp_path):
        """Test exact resolution finds nothing when only longer measurements exist."""
        touch(tmp_path / 'cpu_usage_host-a.rrd')
        assert strategy.resolve_file_paths('cpu', [], exact=True) == []
        assert strategy.resolve_file_paths('cpu_usage', [], exact=True) == [
            f'{tmp_path}/cpu_usage_host-a.rrd'
        ]


class TestFolderStrategy:
    """Test cases for tags stored as directories."""

    @pytest.fixture
    def strategy(self, tmp_path):
        return FolderStrategy(f'{tmp_path}/', ['region', 'host'])

    def test_get_file_path(self, strategy, tmp_path):
        """Test folder tags become directories."""
        path = strategy.get_file_path(
            'cpu_usage', {'region': 'us-east', 'host': 'server1', 'env': 'prod'}
        )
        assert path == f'{tmp_path}/us-east/server1/cpu_usage_env-prod.rrd'
        assert (tmp_path / 'us-east' / 'server1').is_dir()

    def test_unset_folder(self, strategy, tmp_path):
        """Test a missing folder tag."""
        path = strategy.get_file_path('cpu_usage', {'host': 'server1'})
        assert path == f'{tmp_path}/_unset/server1/cpu_usage.rrd'

    def test_resolve_with_folder_tags(self, strategy):
        """Test folder tags are decoded from the path."""
        touch_paths = [
            strategy.get_file_path('cpu_usage', {'region': 'us-east', 'host': 'server1', 'env': 'prod'}),
            strategy.get_file_path('cpu_usage', {'region': 'eu-west', 'host': 'server2', 'env': 'prod'}),
        ]
        for path in touch_paths:
            with open(path, 'wb'):
                pass

        conditions = [TagCondition('region', '=', 'us-east'), TagCondition('env', '=', 'prod')]
        assert strategy.resolve_file_paths('cpu', conditions) == [touch_paths[0]]

        either = [
            TagCondition('host', '=', 'server2'),
            TagCondition('region', '=', 'us-east', 'OR'),
        ]
        assert strategy.resolve_file_paths('cpu', either) == sorted(touch_paths)

    def test_unset_folder_is_not_a_tag(self, strategy):
        """Test '_unset' directories do not produce tag values."""
        path = strategy.get_file_path('mem', {'host': 'server1'})
        with open(path, 'wb'):
            pass
        assert strategy.find_measurements_by_tags([TagCondition('region', '=', '_unset')]) == []
        assert strategy.find_measurements_by_tags([TagCondition('host', '=', 'server1')]) == ['mem']

    def test_equality_matches_sanitised_folder(self, tmp_path):
        """Test a pruned AND chain finds the same files as an unpruned OR chain."""
        strategy = FolderStrategy(f'{tmp_path}/', ['region'])
        path = strategy.get_file_path('cpu', {'region': 'us-east'})
        with open(path, 'wb'):
            pass

        assert strategy.resolve_file_paths('cpu', [TagCondition('region', '=', 'us.east')]) == [path]
        assert strategy.resolve_file_paths('cpu', [TagCondition('region', '=', 'us_east')]) == [path]
        either = [
            TagCondition('region', '=', 'us.east'),
            TagCondition('region', '=', 'eu.west', 'OR'),
        ]
        assert strategy.resolve_file_paths('cpu', either) == [path]

    def test_exact_measurement(self, strategy):
        """Test exact resolution inside folders."""
        paths = [
            strategy.get_file_path('cpu', {'region': 'us', 'host': 'a'}),
            strategy.get_file_path('cpu2', {'region': 'us', 'host': 'a'}),
        ]
        for path in paths:
            with open(path, 'wb'):
                pass

        conditions = [TagCondition('region', '=', 'us')]
        assert strategy.resolve_file_paths('cpu', conditions) == paths
        assert strategy.resolve_file_paths('cpu', conditions, exact=True) == paths[:1]


class TestNoTagsStrategy:
    """Test cases for the tagless layout."""

    def test_tags_ignored(self, tmp_path):
        """Test tags do not affect file paths or resolution."""
        strategy = NoTagsStrategy(f'{tmp_path}/')
        path = strategy.get_file_path('cpu/usage:with?invalid*chars', {'host': 'a'})
        assert path == f'{tmp_path}/cpuusagewithinvalidchars.rrd'

        touch(tmp_path / 'cpu.rrd')
        touch(tmp_path / 'mem.rrd')
        conditions = [TagCondition('host', '=', 'nowhere')]
        assert strategy.resolve_file_paths('cpu', conditions) == [f'{tmp_path}/cpu.rrd']
        assert strategy.find_measurements_by_tags(conditions) == ['cpu', 'mem']

    def test_exact_measurement(self, tmp_path):
        """Test exact resolution matches the whole file name."""
        strategy = NoTagsStrategy(f'{tmp_path}/')
        touch(tmp_path / 'cpu.rrd')
        touch(tmp_path / 'cpu2.rrd')
        assert strategy.resolve_file_paths('cpu', [], exact=True) == [f'{tmp_path}/cpu.rrd']
        assert strategy.resolve_file_paths('mem', [], exact=True) == []


class TestCreateTagStrategy:
    """Test cases for the strategy factory."""

    def test_create_by_name(self, tmp_path):
        """Test each strategy name."""
        base = f'{tmp_path}/'
        assert isinstance(create_tag_strategy('filename', base), FileNameStrategy)
        assert isinstance(create_tag_strategy('none', base), NoTagsStrategy)
        folder = create_tag_strategy('folder', base, ['host'])
        assert isinstance(folder, FolderStrategy)
        assert folder.folder_tags == ['host']

    def test_unknown_strategy(self, tmp_path):
        """Test error on an unknown name."""
        with pytest.raises(TagResolutionError, match="Unknown tag strategy: hash"):
            create_tag_strategy('hash', f'{tmp_path}/')
