"""
Services Package

- event_bus: Topic pub/sub that decouples push handlers from consumers
"""
