"""Test package for the multi-view video categorization trials.

The core modules (viewpoints, movement input, phases, trajectory, occlusion
geometry, controller) are tested against a fake clock. The renderer and app
tests run headlessly using pygame's dummy video driver to avoid opening real
windows. To run these tests, execute ``pytest`` from the project root.
"""
