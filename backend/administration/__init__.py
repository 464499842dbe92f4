"""Administration bounded context: guarded admin mutations, listings and the audit trail."""
