"""Domain layer: aggregates, their state tables and the events they emit.

This package defines the primitives every other layer depends on.
Aggregates only change through their own methods and record one
``DomainEvent`` per accepted transition.
"""
