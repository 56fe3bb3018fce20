"""Audit domain - append-only change log for contract and supervision edits"""
