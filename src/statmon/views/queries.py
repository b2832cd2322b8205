# Query templates for the default views.
#
# Every column inside a view's diff range must be non-null; nullable
# counters are coalesced to 0.
#
# Placeholders rendered by ViewSpec.render():
#   {pgss_schema} schema where pg_stat_statements is installed
#   {query_text}  query text expression, trimmed when a string limit is set

PG_STAT_DATABASE_GENERAL = (
    "SELECT datname, "
    "xact_commit AS commits, xact_rollback AS rollbacks, "
    "blks_read AS reads, blks_hit AS hits, "
    "tup_returned AS returned, tup_fetched AS fetched, "
    "tup_inserted AS inserts, tup_updated AS updates, tup_deleted AS deletes, "
    "conflicts, deadlocks, temp_files, temp_bytes, "
    "round(blk_read_time::numeric, 2) AS read_t, round(blk_write_time::numeric, 2) AS write_t, "
    "date_trunc('seconds', now() - stats_reset)::text AS stats_age "
    "FROM pg_stat_database WHERE datname IS NOT NULL ORDER BY datname"
)

PG_STAT_TABLES = (
    "SELECT schemaname || '.' || relname AS relation, "
    "seq_scan, seq_tup_read, coalesce(idx_scan, 0) AS idx_scan, coalesce(idx_tup_fetch, 0) AS idx_tup_fetch, "
    "n_tup_ins AS inserted, n_tup_upd AS updated, n_tup_del AS deleted, n_tup_hot_upd AS hot_updated, "
    "n_live_tup AS live, n_dead_tup AS dead "
    "FROM pg_stat_user_tables ORDER BY 1"
)

PG_STAT_INDEXES = (
    "SELECT s.schemaname || '.' || s.relname || '.' || s.indexrelname AS index, "
    "s.idx_scan, s.idx_tup_read, s.idx_tup_fetch, i.idx_blks_read, i.idx_blks_hit "
    "FROM pg_stat_user_indexes s JOIN pg_statio_user_indexes i USING (indexrelid) ORDER BY 1"
)

PG_STAT_FUNCTIONS = (
    "SELECT funcid, schemaname || '.' || funcname AS function, "
    "calls, round(total_time::numeric, 2) AS total_t, round(self_time::numeric, 2) AS self_t, "
    "round((total_time / greatest(calls, 1))::numeric, 4) AS avg_t "
    "FROM pg_stat_user_functions ORDER BY funcid"
)

PG_TABLES_SIZES = (
    "SELECT schemaname || '.' || relname AS relation, "
    "coalesce(pg_total_relation_size(relid), 0) AS total_bytes, "
    "coalesce(pg_relation_size(relid), 0) AS rel_bytes, "
    "coalesce(pg_indexes_size(relid), 0) AS idx_bytes, "
    "coalesce(pg_total_relation_size(relid), 0) AS total_change, "
    "coalesce(pg_relation_size(relid), 0) AS rel_change, "
    "coalesce(pg_indexes_size(relid), 0) AS idx_change "
    "FROM pg_stat_user_tables ORDER BY 1"
)

PG_STAT_ACTIVITY = (
    "SELECT pid, client_addr::text AS client, usename AS user, datname AS database, "
    "state, wait_event_type AS wait_etype, wait_event, "
    "date_trunc('seconds', clock_timestamp() - xact_start)::text AS xact_age, "
    "date_trunc('seconds', clock_timestamp() - query_start)::text AS query_age, "
    "{query_text} AS query "
    "FROM pg_stat_activity WHERE backend_type = 'client backend' AND pid <> pg_backend_pid() "
    "ORDER BY pid"
)

PG_STAT_REPLICATION = (
    "SELECT pid, client_addr::text AS client, usename AS user, application_name AS name, "
    "state, sync_state AS mode, "
    "(pg_wal_lsn_diff(pg_current_wal_lsn(), sent_lsn) / 1024)::bigint AS \"pending,KiB\", "
    "(pg_wal_lsn_diff(sent_lsn, write_lsn) / 1024)::bigint AS \"write,KiB\", "
    "(pg_wal_lsn_diff(write_lsn, flush_lsn) / 1024)::bigint AS \"flush,KiB\", "
    "(pg_wal_lsn_diff(flush_lsn, replay_lsn) / 1024)::bigint AS \"replay,KiB\", "
    "coalesce(date_trunc('seconds', replay_lag), '0 seconds'::interval)::text AS replay_lag "
    "FROM pg_stat_replication ORDER BY pid"
)

PG_STAT_WAL = (
    "SELECT 'wal' AS scope, wal_records AS records, wal_fpi AS fpi, wal_bytes AS bytes, "
    "wal_buffers_full AS buffers_full, "
    "date_trunc('seconds', now() - stats_reset)::text AS stats_age "
    "FROM pg_stat_wal"
)

PG_STAT_STATEMENTS_TIMINGS = (
    "SELECT left(md5(p.userid::text || '/' || p.dbid::text || '/' || p.queryid::text), 10) AS queryid, "
    "r.rolname AS user, d.datname AS database, "
    "p.calls, round(p.total_exec_time::numeric, 2) AS exec_t, "
    "round(p.total_plan_time::numeric, 2) AS plan_t, p.rows, "
    "{query_text} AS query "
    "FROM {pgss_schema}.pg_stat_statements p "
    "JOIN pg_roles r ON r.oid = p.userid JOIN pg_database d ON d.oid = p.dbid "
    "ORDER BY 1"
)

PG_STAT_STATEMENTS_IO = (
    "SELECT left(md5(p.userid::text || '/' || p.dbid::text || '/' || p.queryid::text), 10) AS queryid, "
    "r.rolname AS user, d.datname AS database, p.calls, "
    "p.shared_blks_hit AS hit, p.shared_blks_read AS read, "
    "p.shared_blks_dirtied AS dirtied, p.shared_blks_written AS written, "
    "{query_text} AS query "
    "FROM {pgss_schema}.pg_stat_statements p "
    "JOIN pg_roles r ON r.oid = p.userid JOIN pg_database d ON d.oid = p.dbid "
    "ORDER BY 1"
)
