"""Configuration, logging, response envelopes and notifications"""
