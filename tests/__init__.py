"""Test package for MathOMeter.

Core tests exercise counterbalancing, planning, progress storage and the
response capture without pygame.  The headless simulation tests run whole
sessions against a fake stage and clock (see ``tests.fakes``), and the smoke
tests start the pygame shell with SDL's dummy drivers.  To run these tests,
execute ``pytest`` from the project root.
"""
