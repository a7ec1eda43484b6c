"""Release-cycle controller for scheduled data dumps.

Looks up the last published release, runs the dump producer against that
timestamp, and when the producer reports new data packages its outputs,
publishes a GitHub release and retires the oldest one.
"""

__version__ = "0.1.0"
