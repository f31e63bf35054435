import ipaddress

import pytest

from ztunnel.matchers import RbacAction, RbacMatch, RbacScope, StringMatch
from ztunnel.rbac import Authorization, Connection, Identity


def allow_policy(name, rules):
    return Authorization(
        name=name,
        namespace="namespace",
        scope=RbacScope.GLOBAL,
        action=RbacAction.ALLOW,
        rules=rules,
    )


def plaintext_conn():
    return Connection(
        src_identity=None,
        src_ip="127.0.0.1",
        dst_network="",
        dst="127.0.0.2:8080",
    )


def tls_conn():
    return Connection(
        src_identity=Identity("td", "namespace", "account"),
        src_ip="127.0.0.1",
        dst_network="",
        dst="127.0.0.2:8080",
    )


def tls_conn_alt():
    return Connection(
        src_identity=Identity("td-alt", "ns-alt", "sa=alt"),
        src_ip="127.0.0.3",
        dst_network="",
        dst="127.0.0.4:9090",
    )


def conn_in(namespace, port, network=""):
    return Connection(
        src_identity=Identity("td", namespace, "account"),
        src_ip="127.0.0.1",
        dst_network=network,
        dst=f"127.0.0.2:{port}",
    )


def test_rbac_empty_policy():
    assert not allow_policy("empty", [[[RbacMatch()]]]).matches(plaintext_conn())
    assert allow_policy("empty", [[[]]]).matches(plaintext_conn())
    assert allow_policy("empty", [[]]).matches(plaintext_conn())
    assert not allow_policy("empty", []).matches(plaintext_conn())


def test_rbac_nesting():
    pol = allow_policy(
        "nested",
        [
            [
                [
                    RbacMatch(namespaces=[StringMatch.exact("a")]),
                    RbacMatch(namespaces=[StringMatch.exact("b")]),
                ],
                [RbacMatch(destination_ports=[80])],
            ]
        ],
    )
    assert pol.matches(conn_in("a", 80))
    assert pol.matches(conn_in("b", 80))
    assert pol.matches(conn_in("b", 80, network="remote"))
    assert not pol.matches(conn_in("bad", 80))
    assert not pol.matches(conn_in("b", 12345))


def test_rbac_multi_rule():
    pol = allow_policy(
        "nested",
        [
            [[RbacMatch(namespaces=[StringMatch.exact("a")])]],
            [[RbacMatch(namespaces=[StringMatch.exact("b")])]],
        ],
    )
    assert pol.matches(conn_in("a", 80))
    assert pol.matches(conn_in("b", 80))
    assert not pol.matches(conn_in("bad", 80))


def net(text, prefix):
    return ipaddress.ip_network(f"{text}/{prefix}", strict=False)


@pytest.mark.parametrize(
    "field_name, values, expected",
    [
        ("namespaces", [StringMatch.exact("namespace")], (False, True, False)),
        ("not_namespaces", [StringMatch.exact("namespace")], (True, False, True)),
        (
            "principals",
            [StringMatch.exact("td/ns/namespace/sa/account")],
            (False, True, False),
        ),
        (
            "not_principals",
            [StringMatch.exact("td/ns/namespace/sa/account")],
            (True, False, True),
        ),
        ("source_ips", [net("127.0.0.1", 32)], (True, True, False)),
        ("not_source_ips", [net("127.0.0.1", 32)], (False, False, True)),
        ("destination_ips", [net("127.0.0.2", 32)], (True, True, False)),
        ("not_destination_ips", [net("127.0.0.2", 32)], (False, False, True)),
        ("destination_ips", [net("127.0.0.1", 24)], (True, True, True)),
        ("destination_ports", [8080], (True, True, False)),
        ("not_destination_ports", [8080], (False, False, True)),
    ],
    ids=[
        "namespaces",
        "not_namespaces",
        "principals",
        "not_principals",
        "source_ips",
        "not_source_ips",
        "destination_ips",
        "not_destination_ips",
        "cidr_range",
        "destination_ports",
        "not_destination_ports",
    ],
)
def test_rbac_single_field(field_name, values, expected):
    pol = allow_policy(field_name, [[[RbacMatch(**{field_name: values})]]])
    conns = (plaintext_conn(), tls_conn(), tls_conn_alt())
    for conn, result in zip(conns, expected):
        assert pol.matches(conn) == result, str(conn)


def test_to_key():
    assert allow_policy("pol", []).to_key() == "namespace/pol"


def test_identity_string():
    assert str(Identity("td", "namespace", "account")) == "spiffe://td/ns/namespace/sa/account"


def test_connection_display():
    assert str(plaintext_conn()) == "127.0.0.1(None)->127.0.0.2:8080"
    assert str(tls_conn()) == (
        "127.0.0.1(spiffe://td/ns/namespace/sa/account)->127.0.0.2:8080"
    )


def test_connection_ipv6_destination():
    conn = Connection(None, "::1", "", "[::2]:443")
    assert conn.dst_ip == ipaddress.ip_address("::2")
    assert conn.dst_port == 443
    assert str(conn) == "::1(None)->[::2]:443"


def test_connection_tuple_destination_equals_string():
    assert Connection(None, "127.0.0.1", "", ("127.0.0.2", 8080)) == plaintext_conn()


def test_connection_rejects_bad_address():
    with pytest.raises(ValueError):
        Connection(None, "127.0.0.1", "", "127.0.0.2")


def test_ipv4_network_does_not_match_ipv6_source():
    pol = allow_policy("v", [[[RbacMatch(source_ips=[net("127.0.0.1", 32)])]]])
    assert not pol.matches(Connection(None, "::1", "", "[::2]:80"))