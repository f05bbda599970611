"""Test package for the therapy mini-game trainer.

Core tests drive the round engine with a fake clock; the smoke tests run the
pygame shell headlessly using SDL's dummy video driver. To run these tests,
execute ``pytest`` from the project root.
"""
