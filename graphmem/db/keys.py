"""Single-table key scheme.

Every item lives in one table; the key layout below is what repositories
and the idempotency store rely on, and must not drift:

    Node metadata   PK=USER#<u>#NODE#<n>      SK=METADATA#v0
                    GSI1PK=USER#<u>#NODE      GSI1SK=NODE#<n>
    Keyword         PK=USER#<u>#NODE#<n>      SK=KEYWORD#<kw>
                    GSI1PK=USER#<u>#KEYWORD#<kw>  GSI1SK=NODE#<n>
    Edge            PK=USER#<u>#NODE#<src>    SK=EDGE#RELATES_TO#<tgt>
                    GSI1PK=USER#<u>#EDGE      GSI1SK=EDGE#<src>#<tgt>
                    GSI2PK=USER#<u>#TARGET#<tgt>  GSI2SK=SOURCE#<src>
    Category        PK=USER#<u>#CATEGORY#<c>  SK=METADATA#v0
                    GSI1PK=USER#<u>#CATEGORY  GSI1SK=CATEGORY#<c>
    Membership      PK=USER#<u>#NODE#<n>      SK=CATEGORY#<c>
                    GSI2PK=USER#<u>#CATEGORY#<c>#NODES  GSI2SK=NODE#<n>
    Idempotency     PK=IDEMPOTENCY#<u>#<op>   SK=<hash>

Node and category metadata items carry a ``LinkStamp`` that is replaced
whenever an edge or membership referencing them is written; their deletes
are conditioned on the stamp they read.
"""

import uuid

from graphmem.store.protocol import Key

METADATA_SK = "METADATA#v0"
KEYWORD_PREFIX = "KEYWORD#"
EDGE_PREFIX = "EDGE#"
EDGE_SK_PREFIX = "EDGE#RELATES_TO#"
CATEGORY_PREFIX = "CATEGORY#"
NODE_PREFIX = "NODE#"
SOURCE_PREFIX = "SOURCE#"

ENTITY_NODE = "NODE"
ENTITY_KEYWORD = "KEYWORD"
ENTITY_EDGE = "EDGE"
ENTITY_CATEGORY = "CATEGORY"
ENTITY_MEMBERSHIP = "MEMBERSHIP"
ENTITY_IDEMPOTENCY = "IDEMPOTENCY"

LINK_STAMP = "LinkStamp"


def _uid(user_id) -> str:
    return str(user_id)


def node_pk(user_id, node_id) -> str:
    return f"USER#{_uid(user_id)}#NODE#{node_id}"


def node_key(user_id, node_id) -> Key:
    return Key(node_pk(user_id, node_id), METADATA_SK)


def user_nodes_gsi1(user_id) -> str:
    return f"USER#{_uid(user_id)}#NODE"


def keyword_key(user_id, node_id, keyword: str) -> Key:
    return Key(node_pk(user_id, node_id), f"{KEYWORD_PREFIX}{keyword}")


def keyword_gsi1(user_id, keyword: str) -> str:
    return f"USER#{_uid(user_id)}#KEYWORD#{keyword}"


def edge_key(user_id, source_id, target_id) -> Key:
    return Key(node_pk(user_id, source_id), f"{EDGE_SK_PREFIX}{target_id}")


def user_edges_gsi1(user_id) -> str:
    return f"USER#{_uid(user_id)}#EDGE"


def edge_gsi1_sk(source_id, target_id) -> str:
    return f"EDGE#{source_id}#{target_id}"


def edge_target_gsi2(user_id, target_id) -> str:
    return f"USER#{_uid(user_id)}#TARGET#{target_id}"


def category_pk(user_id, category_id) -> str:
    return f"USER#{_uid(user_id)}#CATEGORY#{category_id}"


def category_key(user_id, category_id) -> Key:
    return Key(category_pk(user_id, category_id), METADATA_SK)


def user_categories_gsi1(user_id) -> str:
    return f"USER#{_uid(user_id)}#CATEGORY"


def membership_key(user_id, node_id, category_id) -> Key:
    return Key(node_pk(user_id, node_id), f"{CATEGORY_PREFIX}{category_id}")


def category_nodes_gsi2(user_id, category_id) -> str:
    return f"USER#{_uid(user_id)}#CATEGORY#{category_id}#NODES"


def idempotency_key(user_id, operation: str, request_hash: str) -> Key:
    return Key(f"IDEMPOTENCY#{_uid(user_id)}#{operation}", request_hash)


def strip_prefix(value: str, prefix: str) -> str:
    """Return ``value`` without ``prefix`` (ValueError when it does not match)."""
    if not value.startswith(prefix):
        raise ValueError(f"{value!r} does not start with {prefix!r}")
    return value[len(prefix):]


def new_link_stamp() -> str:
    return uuid.uuid4().hex
