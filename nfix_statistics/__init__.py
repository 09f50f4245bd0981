"""
Statistical analysis package for the soil nitrogen-fixation study.

Modules:
    config              – shared constants (paths, ecosystem style, MCMC settings)
    site_map            – sampling-site map over world polygons
    distribution        – NF distribution by ecosystem group (raincloud plot)
    mixed_effects       – random-intercept regression NF ~ C
    variable_importance – random-forest permutation importance for nifH
    joint_model         – hierarchical Bayesian model + variance partitioning
    plots               – all visualisation routines
    run_all             – orchestrator: run every stage + save report
"""
