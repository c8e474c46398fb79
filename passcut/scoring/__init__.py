"""
scoring/: pure scoring, ranking and pass-cut calculators

Modules:
    utils.py                - Decimal rounding helpers
    policy.py               - Bonus / cutoff / pass-multiple policies
    score_calculator.py     - Answer-sheet scoring engine
    anomaly_detector.py     - Suspicious answer-sheet heuristics
    ranking.py              - Rank, percentile and population statistics
    distribution.py         - Score bands, score_at_rank, histogram
    correct_rate.py         - Per-question correct rates and difficulty
    pass_cut_calculator.py  - Region/track pass-cut projection
    release_evaluator.py    - Auto-release readiness evaluation
    prediction.py           - Personal prediction pyramid
"""
