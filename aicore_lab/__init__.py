"""
AI Core Lab

A local workbench for the SAP AI Core house-price tutorial: trains the
decision tree model, serves it over the tutorial's HTTP contract and emulates
the AI Core lifecycle (artifacts, executables, configurations, executions,
deployments) against a filesystem object store.
"""

__version__ = "1.0.0"
__author__ = "AI Core Lab Team"
