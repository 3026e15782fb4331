"""Gmail integration - OAuth, payload parsing, mailbox scanning"""
