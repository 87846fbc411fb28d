"""Event and persistence layer.

The lifecycle is the only writer; everything here is either a channel
out of the engine (events) or a place to keep the trip across restarts.
"""
