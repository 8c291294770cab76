"""
Groups App - Clans and Federations

Membership and leadership-succession engine: users join clans and
federations, leaders are succeeded automatically when they leave, and
every mutation keeps the group side and the user side of each membership
consistent.
"""
