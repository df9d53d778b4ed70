"""
Backend do Cartão Convênio.

Estrutura:
- config.py       : configuração via variáveis de ambiente (.env)
- db.py           : engine e sessões SQLAlchemy
- models.py       : modelos ORM e enums
- auth_*.py       : autenticação, sessão e troca de perfil (role)
- permissions.py  : capacidades por perfil, checadas na borda da sessão
- recurrence.py   : expansão de consultas recorrentes
- services.py     : casos de uso (consultas, dependentes, serviços, locais)
- documents.py    : renderização de documentos por tipo
- client.py       : cliente HTTP para a API (usado pela UI Streamlit)
- cli.py          : operações de manutenção via linha de comando
"""
