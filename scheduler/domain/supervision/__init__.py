"""Supervision domain - supervising/supervised provider relationships per payer"""
