"""Application services for the lexrel release tool.

Services implement the release flows (doctor, prepare, cut), coordinating
between the core layer (core/) and infrastructure (git/, platform/).
"""
