"""
Pure calculation engines.

No I/O, no database access, no clock reads.  Configuration is passed in as a
``RateConfig`` value; amounts are integer minor units.
"""
