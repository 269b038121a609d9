"""Chronicle：连载小说的有界上下文组装器。"""
