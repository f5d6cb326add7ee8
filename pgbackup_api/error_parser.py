# pgbackup_api/error_parser.py

def summarize_pg_error(stderr: str) -> str:
    """
    Parses the stderr output from pg_dump or pg_restore and returns a human-readable summary.
    """
    stderr = (stderr or "").lower()

    if "password authentication failed" in stderr:
        return "Authentication error: the password was rejected by the server."
    if "authentication failed" in stderr:
        return "Authentication error: wrong user name or password."
    if "does not exist" in stderr and "database" in stderr:
        return "Database error: the requested database does not exist."
    if "connection refused" in stderr:
        return "Connection error: the database server refused the connection. Check host and port."
    if "could not translate host name" in stderr:
        return "Connection error: the host name could not be resolved."
    if "timeout expired" in stderr:
        return "Connection error: timed out while connecting to the database server."
    if "permission denied" in stderr:
        return "Permission error: the user lacks the privileges required for this operation."
    if "server version mismatch" in stderr or "unsupported version" in stderr:
        return "Version error: the client tool does not match the server or archive version."
    if "input file does not appear to be a valid archive" in stderr:
        return "Archive error: the file is not a valid custom-format dump."
    if "no space left on device" in stderr:
        return "Disk error: no space left on device."

    return "Unknown error: the command failed for an unidentified reason. Check the full log for details."
