"""Partners domain - referral organizations and their case managers"""
