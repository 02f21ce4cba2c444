"""
Protocol-wide immutable parameters mirrored from the on-chain programs.

These values must match the deployed Main Lottery and Quick Pick Express
programs byte for byte. Changing a seed here breaks every PDA derivation.
"""

# PDA seeds (Main Lottery)
LOTTERY_SEED = b"lottery"
DRAW_SEED = b"draw"

# PDA seeds (Quick Pick Express)
QUICK_PICK_SEED = b"quick_pick"
QUICK_PICK_DRAW_SEED = b"quick_pick_draw"

# Main Lottery matrix (6/46)
NUMBERS_PER_TICKET = 6
MAX_NUMBER = 46

# Quick Pick matrix (5/35)
QP_NUMBERS_PER_TICKET = 5
QP_MAX_NUMBER = 35

# Seconds after commit before a draw may be cancelled (1 hour)
DRAW_COMMIT_TIMEOUT = 3600

# Ticket sales close this many seconds before the scheduled draw
TICKET_SALE_CUTOFF = 3600
QP_TICKET_SALE_CUTOFF = 300

# Switchboard on-demand (mainnet)
SWITCHBOARD_PROGRAM_ID = "SBondMDrcV3K4kxZR1HNVT7osZxAHVHgYXL5Ze1oMUv"

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SLOT_HASHES_SYSVAR_ID = "SysvarS1otHashes111111111111111111111111111"
