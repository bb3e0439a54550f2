"""
Database Table Name Abstraction

Centralized table and key-column names for the attempt store.
All table references should go through this module.

Usage:
    from config.database import SupabaseTables

    SupabaseTables.key_column(SupabaseTables.LOGIN_ATTEMPTS_IP)  # 'ip_address'
"""


class SupabaseTables:
    """Supabase table name constants"""

    LOGIN_ATTEMPTS_IP = "login_attempts_ip"
    LOGIN_ATTEMPTS_EMAIL = "login_attempts_email"

    # Partition key column per table (unique per collection)
    IP_KEY_COLUMN = "ip_address"
    EMAIL_KEY_COLUMN = "email"

    # Columns shared by both tables
    RECORD_COLUMNS = (
        "attempt_count",
        "first_attempt",
        "last_attempt",
        "is_locked",
        "lockout_until",
        "updated_at",
    )

    @classmethod
    def key_column(cls, table_name: str) -> str:
        """
        Get the key column for an attempts table

        Args:
            table_name: One of the login_attempts_* tables (or a configured
                name ending in '_ip' / '_email')

        Returns:
            Column holding the record key
        """
        if table_name == cls.LOGIN_ATTEMPTS_IP or table_name.endswith("_ip"):
            return cls.IP_KEY_COLUMN
        if table_name == cls.LOGIN_ATTEMPTS_EMAIL or table_name.endswith("_email"):
            return cls.EMAIL_KEY_COLUMN
        raise ValueError(f"Unknown attempts table: {table_name}")
