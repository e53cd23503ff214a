"""
Composite customer key shared by the license index build and the join.
"""

KEY_SEPARATOR = ' '


def customer_key(name: str, addr: str, city: str, state: str) -> str:
    """
    Join a customer's name and address into the license index key.

    No case or whitespace normalization is applied: the key doubles as the
    roster search query, and both phases must derive it identically.
    """
    return KEY_SEPARATOR.join((name, addr, city, state))
