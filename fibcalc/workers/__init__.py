"""
Fibcalc Engine - Workers

The compute worker is run as a process via:
    python -m fibcalc.worker
"""
