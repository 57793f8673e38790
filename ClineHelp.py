HELP = """\
Scratch Runtime - run a block project headlessly.

Usage:
    python Main.py <project.json> [--seconds N] [--realtime] [--seed N] [--debug]

Options:
    --seconds N     How long to run before stopping, default 5.
    --realtime      Follow the wall clock instead of simulated time.
    --seed N        Seed for "pick random" and "go to random position".
    --debug         Log every executed instruction.

The final state of every actor and the thread statistics are printed as json.
"""
