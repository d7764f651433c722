"""
The ReminderLink command line. See ``rlcli.py``.
"""
