"""🧾 SQL Generation - One parameterized query per request type.

Tables follow the event streams collected on every cluster node:
- fs_events: filesystem accesses (fine-grained clock)
- process_events: process lifetimes (coarse auditing clock)
- process_group_events, ipc_events, socket_events, socket_connect_events
- workflows, workflow_steps, scheduler_jobs: scheduler bookkeeping
- process_logs, versions

Joins across streams use the fuzzy predicate; joins inside one stream stay strict.
Values are always bound as named parameters ($name), never interpolated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..core.timeutil import DEFAULT_EPSILON_MS, FAR_FUTURE, format_timestamp
from .contract import Direction, ProvenanceRequest, RequestType

FS_EVENTS = "fs_events"
PROCESS_EVENTS = "process_events"
PROCESS_GROUP_EVENTS = "process_group_events"
IPC_EVENTS = "ipc_events"
SOCKET_EVENTS = "socket_events"
SOCKET_CONNECT_EVENTS = "socket_connect_events"
WORKFLOWS = "workflows"
WORKFLOW_STEPS = "workflow_steps"
SCHEDULER_JOBS = "scheduler_jobs"
PROCESS_LOGS = "process_logs"
VERSIONS = "versions"

SCHEMA: dict[str, dict[str, str]] = {
    FS_EVENTS: {
        "node_name": "VARCHAR",
        "pid": "BIGINT",
        "event": "VARCHAR",
        "event_time": "TIMESTAMP",
        "path": "VARCHAR",
        "dst_path": "VARCHAR",
        "inode": "BIGINT",
        "version": "VARCHAR",
        "bytes_read": "BIGINT",
        "bytes_written": "BIGINT",
    },
    PROCESS_EVENTS: {
        "node_name": "VARCHAR",
        "pid": "BIGINT",
        "ppid": "BIGINT",
        "pgid": "BIGINT",
        "birth_time": "TIMESTAMP",
        "death_time": "TIMESTAMP",
        "exec_cmd_line": "VARCHAR",
        "exec_cwd": "VARCHAR",
    },
    PROCESS_GROUP_EVENTS: {
        "node_name": "VARCHAR",
        "pgid": "BIGINT",
        "birth_time": "TIMESTAMP",
        "death_time": "TIMESTAMP",
    },
    IPC_EVENTS: {
        "node_name": "VARCHAR",
        "src_pid": "BIGINT",
        "src_birth": "TIMESTAMP",
        "dst_pid": "BIGINT",
        "dst_birth": "TIMESTAMP",
    },
    SOCKET_EVENTS: {
        "node_name": "VARCHAR",
        "pid": "BIGINT",
        "port": "INTEGER",
        "open_time": "TIMESTAMP",
        "close_time": "TIMESTAMP",
    },
    SOCKET_CONNECT_EVENTS: {
        "node_name": "VARCHAR",
        "pid": "BIGINT",
        "dst_node": "VARCHAR",
        "dst_port": "INTEGER",
        "connect_time": "TIMESTAMP",
    },
    WORKFLOWS: {
        "id": "BIGINT",
        "name": "VARCHAR",
        "start_time": "TIMESTAMP",
        "end_time": "TIMESTAMP",
        "definition1": "VARCHAR",
        "definition2": "VARCHAR",
    },
    WORKFLOW_STEPS: {
        "parent_workflow_id": "BIGINT",
        "name": "VARCHAR",
        "job_id": "BIGINT",
        "start_time": "TIMESTAMP",
        "end_time": "TIMESTAMP",
    },
    SCHEDULER_JOBS: {
        "job_id": "BIGINT",
        "job_pgid": "BIGINT",
    },
    PROCESS_LOGS: {
        "node_name": "VARCHAR",
        "pid": "BIGINT",
        "log_time": "TIMESTAMP",
        "log_level": "VARCHAR",
        "log_msg": "VARCHAR",
    },
    VERSIONS: {
        "node_name": "VARCHAR",
        "path": "VARCHAR",
        "inode": "BIGINT",
        "event_time": "TIMESTAMP",
        "commit_id": "VARCHAR",
    },
}

# Living processes have no death time yet
_OPEN_END = f"TIMESTAMP '{format_timestamp(FAR_FUTURE)}'"

# Processes with unknown start times are recorded at the epoch
_KNOWN_BIRTH = "p.birth_time > TIMESTAMP '1970-01-01 00:00:00'"


def schema_ddl() -> list[str]:
    """CREATE TABLE statements for every event table."""
    statements = []
    for table, columns in SCHEMA.items():
        cols = ",\n    ".join(f"{name} {sql_type}" for name, sql_type in columns.items())
        statements.append(f"CREATE TABLE IF NOT EXISTS {table} (\n    {cols}\n)")
    return statements


@dataclass
class SQLQuery:
    """A statement plus the named parameters it references."""

    sql: str
    params: dict[str, Any] = field(default_factory=dict)


_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


class _Binder:
    """Hands out $placeholders and records exactly the params that are used.

    Placeholders are snake_case (clusterNode -> $cluster_node).
    """

    def __init__(self, params: dict[str, Any]):
        self._source = params
        self.bound: dict[str, Any] = {}

    def __call__(self, name: str) -> str:
        value = self._source[name]
        key = _CAMEL.sub("_", name).lower()
        self.bound[key] = value
        if isinstance(value, datetime):
            return f"CAST(${key} AS TIMESTAMP)"
        return f"${key}"

    def get(self, name: str, default: Any = None) -> Any:
        """Read a param without binding it."""
        value = self._source.get(name)
        return default if value is None else value

    def has(self, name: str) -> bool:
        return self._source.get(name) is not None


def fuzzy_lt(t1: str, t2: str, epsilon_ms: int = DEFAULT_EPSILON_MS) -> str:
    """SQL for t1 < t2 + epsilon (see core.timeutil.fuzzy_before)."""
    return f"({t1} < ({t2} + INTERVAL '{int(epsilon_ms)} milliseconds'))"


def _open_end(column: str) -> str:
    return f"COALESCE({column}, {_OPEN_END})"


def _access_filter(direction: Direction) -> str:
    if direction == Direction.READ:
        return "(f.event = 'CLOSE' AND 0 < f.bytes_read)"
    if direction == Direction.WRITE:
        return "(f.event = 'CLOSE' AND 0 < f.bytes_written)"
    return (
        "((f.event = 'CREATE')"
        " OR (f.event = 'CLOSE' AND (0 < f.bytes_read OR 0 < f.bytes_written))"
        " OR (f.event = 'UNLINK')"
        " OR (f.event = 'RENAME'))"
    )


def _constraint_filter(bind: _Binder) -> str:
    if bind.has("constraintTime"):
        return f"f.event_time <= {bind('constraintTime')}"
    return "true"


def _file_history(bind: _Binder, file_filter: str, epsilon_ms: int) -> str:
    direction = Direction(bind.get("direction", Direction.EITHER))
    birth_before_event = fuzzy_lt("p.birth_time", "f.event_time", epsilon_ms)
    event_before_death = fuzzy_lt("f.event_time", _open_end("p.death_time"), epsilon_ms)
    return f"""
SELECT
    f.event, f.event_time,
    f.path, f.dst_path, f.inode, f.version,
    p.node_name, p.pid, p.birth_time, p.death_time,
    p.exec_cmd_line, p.pgid, p.ppid, p.exec_cwd,
    f.bytes_read, f.bytes_written
FROM {FS_EVENTS} AS f
INNER JOIN {PROCESS_EVENTS} AS p
    ON f.node_name = p.node_name
    AND f.pid = p.pid
    AND {birth_before_event}
    AND {event_before_death}
WHERE ({file_filter})
    AND {_access_filter(direction)}
    AND {_KNOWN_BIRTH}
    AND {_constraint_filter(bind)}
ORDER BY f.event_time, p.node_name, p.pid
"""


def _file_by_path(bind: _Binder, epsilon_ms: int) -> str:
    path = bind("path")
    return _file_history(bind, f"f.path = {path} OR f.dst_path = {path}", epsilon_ms)


def _file_by_inode(bind: _Binder, epsilon_ms: int) -> str:
    path = bind("path")
    file_filter = f"f.inode = {bind('inode')} AND (f.path = {path} OR f.dst_path = {path})"
    return _file_history(bind, file_filter, epsilon_ms)


def _process_initial(bind: _Binder, epsilon_ms: int) -> str:
    return f"""
SELECT p.*
FROM {PROCESS_EVENTS} AS p
WHERE contains(p.exec_cmd_line, {bind('processName')})
ORDER BY p.birth_time
"""


def _process_fs_accesses(bind: _Binder, epsilon_ms: int) -> str:
    direction = Direction(bind.get("direction", Direction.EITHER))
    birth_before_event = fuzzy_lt(bind("birthTime"), "f.event_time", epsilon_ms)
    event_before_death = fuzzy_lt("f.event_time", bind("deathTime"), epsilon_ms)
    return f"""
SELECT
    f.event, f.event_time,
    f.path, f.dst_path, f.inode, f.version,
    f.bytes_read, f.bytes_written,
    f.node_name, f.pid
FROM {FS_EVENTS} AS f
WHERE f.node_name = {bind('clusterNode')}
    AND f.pid = {bind('pid')}
    AND {birth_before_event}
    AND {event_before_death}
    AND {_access_filter(direction)}
    AND {_constraint_filter(bind)}
ORDER BY f.event_time, f.path
"""


_PROCESS_COLUMNS = (
    "p.node_name, p.pid, p.birth_time, p.death_time, "
    "p.exec_cmd_line, p.pgid, p.ppid, p.exec_cwd"
)


def _process_ipc(bind: _Binder, epsilon_ms: int) -> str:
    # Both tables come from the auditing subsystem: strict lifetime subsumption
    return f"""
SELECT DISTINCT {_PROCESS_COLUMNS}
FROM {PROCESS_EVENTS} AS p
INNER JOIN {PROCESS_GROUP_EVENTS} AS g
    ON g.node_name = p.node_name
    AND g.pgid = p.pgid
    AND g.birth_time <= p.birth_time
    AND {_open_end("p.death_time")} <= {_open_end("g.death_time")}
WHERE p.node_name = {bind('clusterNode')}
    AND p.pgid = {bind('pgid')}
    AND p.pid != {bind('pid')}
ORDER BY p.birth_time, p.pid
"""


def _process_true_ipc(bind: _Binder, epsilon_ms: int) -> str:
    node, pid, birth = bind("clusterNode"), bind("pid"), bind("birthTime")
    return f"""
SELECT 'read' AS event, {_PROCESS_COLUMNS}
FROM {PROCESS_EVENTS} AS p, {IPC_EVENTS} AS i
WHERE p.pid = i.dst_pid
    AND p.node_name = i.node_name
    AND p.birth_time = i.dst_birth
    AND i.src_pid = {pid}
    AND i.src_birth = {birth}
    AND i.node_name = {node}
UNION
SELECT 'write' AS event, {_PROCESS_COLUMNS}
FROM {PROCESS_EVENTS} AS p, {IPC_EVENTS} AS i
WHERE p.pid = i.src_pid
    AND p.node_name = i.node_name
    AND p.birth_time = i.src_birth
    AND i.dst_pid = {pid}
    AND i.dst_birth = {birth}
    AND i.node_name = {node}
ORDER BY birth_time, pid
"""


def _process_net(bind: _Binder, epsilon_ms: int) -> str:
    node, pid = bind("clusterNode"), bind("pid")
    birth, death = bind("birthTime"), bind("deathTime")
    # 'read': peers this process connected to; 'write': peers that connected to it
    return f"""
SELECT 'read' AS event, {_PROCESS_COLUMNS}
FROM {SOCKET_EVENTS} AS s, {SOCKET_CONNECT_EVENTS} AS c, {PROCESS_EVENTS} AS p
WHERE c.pid = {pid}
    AND c.node_name = {node}
    AND c.connect_time >= {birth}
    AND c.connect_time <= {death}
    AND c.dst_node = s.node_name
    AND c.dst_port = s.port
    AND c.connect_time >= s.open_time
    AND c.connect_time <= s.close_time
    AND p.pid = s.pid
    AND p.node_name = s.node_name
    AND p.birth_time <= s.open_time
    AND {_open_end("p.death_time")} >= s.close_time
UNION
SELECT 'write' AS event, {_PROCESS_COLUMNS}
FROM {SOCKET_EVENTS} AS s, {SOCKET_CONNECT_EVENTS} AS c, {PROCESS_EVENTS} AS p
WHERE s.pid = {pid}
    AND s.node_name = {node}
    AND s.open_time >= {birth}
    AND s.close_time <= {death}
    AND c.dst_node = s.node_name
    AND c.dst_port = s.port
    AND c.connect_time >= s.open_time
    AND c.connect_time <= s.close_time
    AND p.pid = c.pid
    AND p.node_name = c.node_name
    AND p.birth_time <= c.connect_time
    AND c.connect_time <= {_open_end("p.death_time")}
ORDER BY birth_time, pid
"""


def _workflows(bind: _Binder, epsilon_ms: int) -> str:
    return f"SELECT * FROM {WORKFLOWS} ORDER BY start_time DESC"


def _workflow_output_files(bind: _Binder, epsilon_ms: int) -> str:
    workflow_id = bind("workflowId")
    start, end = bind("windowStart"), bind("windowEnd")
    # Scheduler window and event streams use different clocks
    return f"""
SELECT DISTINCT f.path, f.inode, f.node_name
FROM {FS_EVENTS} AS f, {PROCESS_EVENTS} AS p, {SCHEDULER_JOBS} AS j,
    {WORKFLOWS} AS w, {WORKFLOW_STEPS} AS st
WHERE w.id = st.parent_workflow_id
    AND st.job_id = j.job_id
    AND j.job_pgid = p.pgid
    AND p.node_name = f.node_name
    AND p.pid = f.pid
    AND {fuzzy_lt("p.birth_time", "f.event_time", epsilon_ms)}
    AND {fuzzy_lt("f.event_time", _open_end("p.death_time"), epsilon_ms)}
    AND w.id = {workflow_id}
    AND f.event = 'CLOSE' AND 0 < f.bytes_written
    AND st.name IN (
        SELECT last.name
        FROM {WORKFLOW_STEPS} AS last
        WHERE last.parent_workflow_id = {workflow_id}
        ORDER BY last.end_time DESC
        LIMIT 1
    )
    AND {fuzzy_lt(start, "p.birth_time", epsilon_ms)}
    AND {fuzzy_lt(_open_end("p.death_time"), end, epsilon_ms)}
    AND {fuzzy_lt(start, "f.event_time", epsilon_ms)}
    AND {fuzzy_lt("f.event_time", end, epsilon_ms)}
ORDER BY f.path
"""


def _output_file_workflow(bind: _Binder, epsilon_ms: int) -> str:
    return f"""
SELECT DISTINCT w.id, w.name, w.start_time, w.end_time, w.definition1, w.definition2
FROM {FS_EVENTS} AS f, {PROCESS_EVENTS} AS p, {SCHEDULER_JOBS} AS j,
    {WORKFLOWS} AS w, {WORKFLOW_STEPS} AS st
WHERE f.path = {bind('path')}
    AND f.inode = {bind('inode')}
    AND f.event = 'CLOSE' AND 0 < f.bytes_written
    AND p.node_name = f.node_name
    AND p.pid = f.pid
    AND {fuzzy_lt("p.birth_time", "f.event_time", epsilon_ms)}
    AND {fuzzy_lt("f.event_time", _open_end("p.death_time"), epsilon_ms)}
    AND j.job_pgid = p.pgid
    AND st.job_id = j.job_id
    AND w.id = st.parent_workflow_id
ORDER BY w.start_time DESC
"""


def _process_logs(bind: _Binder, epsilon_ms: int) -> str:
    # ppid is included so worker logs show up for the executors they spawn
    return f"""
SELECT l.log_time, l.log_level, l.log_msg, l.pid
FROM {PROCESS_LOGS} AS l
WHERE (l.pid = {bind('pid')} OR l.pid = {bind('ppid')})
    AND l.node_name = {bind('clusterNode')}
    AND l.log_time > {bind('birthTime')}
    AND l.log_time < {bind('deathTime')}
ORDER BY l.log_time
"""


def _workflow_processes(bind: _Binder, epsilon_ms: int) -> str:
    return f"""
SELECT
    p.pid AS id,
    p.exec_cmd_line AS name,
    p.birth_time AS start_time,
    p.node_name AS owner,
    p.death_time AS end_time,
    p.ppid,
    p.pgid,
    p.exec_cwd
FROM {PROCESS_EVENTS} AS p
WHERE contains(p.exec_cmd_line, {bind('jobDescription')})
ORDER BY p.birth_time DESC
"""


def _file_commit_id(bind: _Binder, epsilon_ms: int) -> str:
    # Versions are stamped from the same FS event stream
    return f"""
SELECT v.commit_id
FROM {VERSIONS} AS v
WHERE v.node_name = {bind('clusterNode')}
    AND v.path = {bind('path')}
    AND v.inode = {bind('inode')}
    AND v.event_time = {bind('eventTime')}
"""


SQL_GENERATORS: dict[RequestType, Callable[[_Binder, int], str]] = {
    RequestType.FILE_BY_PATH: _file_by_path,
    RequestType.FILE_BY_INODE: _file_by_inode,
    RequestType.PROCESS_INITIAL: _process_initial,
    RequestType.PROCESS_FS_ACCESSES: _process_fs_accesses,
    RequestType.PROCESS_IPC: _process_ipc,
    RequestType.PROCESS_TRUE_IPC: _process_true_ipc,
    RequestType.PROCESS_NET: _process_net,
    RequestType.WORKFLOWS: _workflows,
    RequestType.WORKFLOW_OUTPUT_FILES: _workflow_output_files,
    RequestType.OUTPUT_FILE_WORKFLOW: _output_file_workflow,
    RequestType.PROCESS_LOGS: _process_logs,
    RequestType.WORKFLOW_PROCESSES: _workflow_processes,
    RequestType.FILE_COMMIT_ID: _file_commit_id,
}


def build_sql(request: ProvenanceRequest, epsilon_ms: int = DEFAULT_EPSILON_MS) -> SQLQuery:
    """Generate the SQL for a validated request.

    Example:
        query = build_sql(request.validate())
        conn.execute(query.sql, query.params)
    """
    bind = _Binder(request.params)
    sql = SQL_GENERATORS[request.request_type](bind, epsilon_ms)
    return SQLQuery(sql=sql.strip(), params=bind.bound)
