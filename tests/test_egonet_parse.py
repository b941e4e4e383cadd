import pickle

import pytest

from egonet_parse import (
    ConnectivityIndex,
    ParseError,
    ProfileIndex,
    ProfileStore,
    UnorderedPair,
    is_dropped_feature,
    parse_egonet,
    read_egonet,
    split_feature_token,
)


EGONET = ["10: 20 30\n", "20: 10\n", "30:\n"]

PROFILES = [
    "1 gender;77 first_name;Ego\n",
    "10 gender;male hometown;id;NYC id;10 education;school;name;MIT education;school;id;5\n",
    "20 gender;female hometown;id;NYC\n",
    "30 gender;male education;school;id;5 education;school;id;6\n",
]


def test_scenario_egonet():
    egonet = parse_egonet(EGONET)
    assert egonet.friends == {10, 20, 30}
    assert set(egonet.connectivity) == {UnorderedPair(10, 20), UnorderedPair(10, 30)}


def test_connectivity_is_symmetric():
    egonet = parse_egonet(EGONET)
    ids = [10, 20, 30, 99]
    for u in ids:
        for v in ids:
            assert egonet.connectivity.connected(u, v) == egonet.connectivity.connected(v, u)
    assert egonet.connectivity.connected(30, 10)


def test_reverse_edges_stored_once():
    conn = ConnectivityIndex()
    assert conn.add(5, 3)
    assert not conn.add(3, 5)
    assert len(conn) == 1
    assert list(conn) == [UnorderedPair(3, 5)]


def test_self_edges_ignored():
    egonet = parse_egonet(["7: 7 8\n", "8: 7\n"])
    assert not egonet.connectivity.connected(7, 7)
    assert len(egonet.connectivity) == 1


def test_mutual_without_own_line_is_still_an_edge():
    egonet = parse_egonet(["1: 2 3\n", "2: 1\n"])
    assert egonet.friends == {1, 2}
    assert egonet.connectivity.connected(3, 1)


def test_blank_lines_skipped():
    egonet = parse_egonet(["\n", "1: 2\n", "   \n", "2: 1\n"])
    assert egonet.friends == {1, 2}


@pytest.mark.parametrize("line", ["10 20 30\n", "10:20 30\n", ": 20\n", "x: 20\n", "10: 2a\n", "10: -3\n"])
def test_malformed_egonet_line(line):
    with pytest.raises(ParseError):
        parse_egonet(["1: 2\n", line], source="42.egonet")


def test_parse_error_location_survives_pickle():
    with pytest.raises(ParseError) as info:
        parse_egonet(["1: 2\n", "3 4\n"], source="42.egonet")
    err = pickle.loads(pickle.dumps(info.value))
    assert err.source == "42.egonet"
    assert err.line_no == 2
    assert str(err) == str(info.value)
    assert str(err).startswith("42.egonet:2: ")


def test_neighbor_sets_restricted_to_friends():
    egonet = parse_egonet(["1: 2 3 99\n", "2: 1 3\n", "3: 1 2\n"])
    neighbors = egonet.connectivity.neighbor_sets(egonet.friends)
    assert neighbors[1] == {2, 3}
    assert neighbors[2] == {1, 3}


def test_split_feature_token():
    assert split_feature_token("birthday;123") == ("birthday", "123")
    assert split_feature_token("education;school;id;456") == ("education;school;id", "456")


@pytest.mark.parametrize("token", ["birthday", "birthday;", ";123", ";"])
def test_split_feature_token_rejects(token):
    with pytest.raises(ParseError):
        split_feature_token(token)


def test_dropped_features():
    assert is_dropped_feature("id")
    assert is_dropped_feature("education;school;name")
    assert is_dropped_feature("name")
    assert not is_dropped_feature("hometown;id")
    assert not is_dropped_feature("first_name")
    assert not is_dropped_feature("username")


def test_profile_store_scan_filters_to_friends():
    store = ProfileStore.scan(PROFILES, frozenset({10, 20, 30}))
    assert 1 not in store.feature_map
    assert store.registry == ["education;school;id", "gender", "hometown;id"]
    assert store.values(30, "education;school;id") == {"5", "6"}
    assert store.values(20, "education;school;id") == set()
    assert store.values(404, "gender") == set()


def test_registry_excludes_id_and_name():
    store = ProfileStore.scan(PROFILES, frozenset({10, 20, 30}))
    for name in store.registry:
        assert name != "id"
        assert name.split(";")[-1] != "name"


def test_shared_values_are_symmetric():
    store = ProfileStore.scan(PROFILES, frozenset({10, 20, 30}))

    def shared(u, v, name):
        return len(store.values(u, name) & store.values(v, name))

    assert shared(10, 30, "education;school;id") == shared(30, 10, "education;school;id") == 1
    assert shared(10, 20, "hometown;id") == 1
    assert shared(10, 20, "gender") == 0
    assert shared(20, 30, "education;school;id") == 0


def test_duplicate_values_are_noops():
    store = ProfileStore.scan(["5 a;x a;x a;y\n"], frozenset({5}))
    assert store.values(5, "a") == {"x", "y"}


def test_profile_scan_only_parses_retained_lines():
    store = ProfileStore.scan(["5 a;x\n", "6 broken\n"], frozenset({5}))
    assert store.registry == ["a"]
    with pytest.raises(ParseError):
        ProfileStore.scan(["5 a;x\n", "6 broken\n"], frozenset({5, 6}))


def test_profile_non_numeric_user():
    with pytest.raises(ParseError):
        ProfileStore.scan(["abc a;x\n"], frozenset({5}))


def test_index_matches_scan():
    index = ProfileIndex.parse(PROFILES)
    assert len(index) == 4
    friends = frozenset({10, 30})
    scanned = ProfileStore.scan(PROFILES, friends)
    indexed = ProfileStore.from_index(index, friends)
    assert indexed.registry == scanned.registry
    for user in friends:
        for name in scanned.registry:
            assert indexed.values(user, name) == scanned.values(user, name)


def test_index_rejects_malformed_token():
    with pytest.raises(ParseError) as info:
        ProfileIndex.parse(["1 a;x\n", "2 novalue\n"], source="features.txt")
    assert info.value.line_no == 2


@pytest.mark.parametrize("token", ["٣", "１２", "²"])
def test_user_ids_are_ascii_digits(token):
    with pytest.raises(ParseError):
        parse_egonet([f"{token}: 1\n"], source="1.egonet")
    with pytest.raises(ParseError):
        parse_egonet([f"1: {token}\n"], source="1.egonet")
    with pytest.raises(ParseError):
        ProfileIndex.parse([f"{token} a;x\n"])


def test_invalid_utf8_egonet_is_parse_error(tmp_path):
    path = tmp_path / "1.egonet"
    path.write_bytes(b"10: 20\n20: 1\xff0\n")
    with pytest.raises(ParseError) as info:
        read_egonet(str(path))
    assert info.value.source == str(path)


def test_invalid_utf8_profile_is_parse_error(tmp_path):
    path = tmp_path / "features.txt"
    path.write_bytes(b"10 gender;m\xe9le\n")
    with pytest.raises(ParseError):
        ProfileIndex.load(str(path))
    with pytest.raises(ParseError):
        with open(path, "r", encoding="utf-8") as f:
            ProfileStore.scan(f, frozenset({10}), source=str(path))
