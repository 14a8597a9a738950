"""Replicated controller that assigns shards to replica groups, and its client."""