"""Decision gate, message submission and the dictation context."""
